"""
Cache envelope models.
"""

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field


class LogicalExpiryEnvelope(BaseModel):
    """
    Value stored without a cache TTL together with its own expiry time.

    Readers serve ``data`` even after ``expire_at`` and schedule a rebuild.
    """

    data: Optional[Any] = Field(None, description="JSON-compatible payload, null when absent in the store")
    expire_at: datetime = Field(..., description="Logical expiry time")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now()) >= self.expire_at
