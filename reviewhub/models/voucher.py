"""
Flash-sale voucher and order models.

This module contains the voucher window/stock record read by the admission
pipeline, the order task handed to the background worker and the result
returned to callers.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, model_validator

from .enums import SeckillStatus


class SeckillVoucherModel(BaseModel):
    """
    Flash-sale voucher with its sale window and stock.
    """
    model_config = ConfigDict(from_attributes=True)

    voucher_id: int = Field(..., ge=1, description="Voucher identifier")
    stock: int = Field(..., ge=0, description="Units available for the sale")
    begin_time: datetime = Field(..., description="Sale opening time")
    end_time: datetime = Field(..., description="Sale closing time")

    @model_validator(mode="after")
    def validate_window(self) -> "SeckillVoucherModel":
        """Ensure the sale window is not inverted."""
        if self.end_time <= self.begin_time:
            raise ValueError("end_time must be after begin_time")
        return self


class VoucherOrderModel(BaseModel):
    """
    Order task created on successful admission.

    Enqueued for the background worker and persisted as one row of
    ``tb_voucher_order``.
    """
    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., ge=1, description="Order identifier from the id worker")
    user_id: int = Field(..., ge=1, description="Ordering user")
    voucher_id: int = Field(..., ge=1, description="Ordered voucher")
    create_time: datetime = Field(default_factory=datetime.now, description="Admission timestamp")


class SeckillResultModel(BaseModel):
    """Answer to a flash-sale request."""

    status: SeckillStatus = Field(..., description="Admission outcome")
    order_id: Optional[int] = Field(None, description="Order id, set only on success")
    message: str = Field(..., description="Human readable outcome")

    @property
    def success(self) -> bool:
        return self.status is SeckillStatus.SUCCESS

    @classmethod
    def of(cls, status: SeckillStatus, order_id: Optional[int] = None) -> "SeckillResultModel":
        return cls(status=status, order_id=order_id, message=status.message)
