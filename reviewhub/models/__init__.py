"""
reviewhub Pydantic models package.

This package contains the Pydantic v2 models used for validation and
JSON serialization of cached and queued data.
"""

# Enums
from .enums import (
    CacheStrategy,
    SeckillStatus,
)

# Shop models
from .shop import (
    ShopModel,
    ShopTypeModel,
)

# Flash-sale models
from .voucher import (
    SeckillVoucherModel,
    VoucherOrderModel,
    SeckillResultModel,
)

# Cache envelope
from .cache import LogicalExpiryEnvelope

__all__ = [
    "CacheStrategy",
    "SeckillStatus",
    "ShopModel",
    "ShopTypeModel",
    "SeckillVoucherModel",
    "VoucherOrderModel",
    "SeckillResultModel",
    "LogicalExpiryEnvelope",
]
