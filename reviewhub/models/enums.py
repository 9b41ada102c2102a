"""
Enums for the reviewhub backend.

This module contains the enumeration types shared by the services and
their callers.
"""

from enum import Enum, IntEnum


class CacheStrategy(str, Enum):
    """Read-through strategy used by the cache client."""
    PASS_THROUGH = "pass_through"        # Cache misses and confirmed absences
    MUTEX = "mutex"                      # One loader per key, others wait
    LOGICAL_EXPIRE = "logical_expire"    # Never-expiring entry, async rebuild


class SeckillStatus(IntEnum):
    """
    Outcome of a flash-sale admission attempt.

    The first three values are the admission script's return codes.
    """
    SUCCESS = 0
    INSUFFICIENT_STOCK = 1
    DUPLICATE_ORDER = 2
    NOT_STARTED = 3
    ENDED = 4
    VOUCHER_NOT_FOUND = 5

    @property
    def message(self) -> str:
        return _SECKILL_MESSAGES[self]


_SECKILL_MESSAGES = {
    SeckillStatus.SUCCESS: "Order accepted",
    SeckillStatus.INSUFFICIENT_STOCK: "Insufficient stock",
    SeckillStatus.DUPLICATE_ORDER: "Duplicate order: one per user",
    SeckillStatus.NOT_STARTED: "Flash sale has not started",
    SeckillStatus.ENDED: "Flash sale has ended",
    SeckillStatus.VOUCHER_NOT_FOUND: "Voucher does not exist",
}
