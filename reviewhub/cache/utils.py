"""
Cache utilities for key naming conventions and TTL management.

This module provides utilities for consistent cache key generation
and TTL calculation with jitter.
"""

import random
from datetime import datetime
from typing import Any, Union
from enum import Enum


class CacheKeyPrefix(str, Enum):
    """Standard cache key prefixes for different data types."""

    # Read-through caching of store records
    SHOP = "cache:shop"
    SHOP_TYPE = "cache:shop-type"
    SECKILL_VOUCHER = "cache:seckill-voucher"

    # Distributed locks
    SHOP_LOCK = "lock:shop"
    ORDER_LOCK = "lock:order"

    # Flash-sale admission state
    SECKILL_STOCK = "seckill:stock"
    SECKILL_ORDER = "seckill:order"

    # Daily id counters
    ID_COUNTER = "icr"


class TTLPreset(int, Enum):
    """Standard TTL presets in seconds for different data types."""

    NULL_MARKER = 120       # 2 minutes
    LOCK = 10               # 10 seconds
    SHOP = 1800             # 30 minutes
    SHOP_TYPE = 3600        # 1 hour
    SECKILL_VOUCHER = 600   # 10 minutes
    ID_COUNTER = 172800     # 2 days


class CacheKeyBuilder:
    """
    Builder class for generating consistent cache keys.

    Keys are colon-joined so that related entries share a namespace.
    """

    @staticmethod
    def build_key(prefix: Union[CacheKeyPrefix, str], *parts: Any, **params: Any) -> str:
        """
        Build a cache key with prefix, parts, and parameters.

        Args:
            prefix: Key prefix (CacheKeyPrefix enum or string)
            *parts: Key parts to join with colons
            **params: Additional parameters to include in key

        Returns:
            str: Generated cache key

        Example:
            build_key(CacheKeyPrefix.SHOP, 1)
            # Returns: "cache:shop:1"
        """
        prefix_str = prefix.value if isinstance(prefix, CacheKeyPrefix) else str(prefix)
        key_parts = [prefix_str]

        for part in parts:
            if part is not None:
                key_parts.append(str(part))

        # Keyword parameters are sorted so equal inputs give equal keys
        for key, value in sorted(params.items()):
            if value is not None:
                key_parts.append(f"{key}={value}")

        return ":".join(key_parts)


class TTLCalculator:
    """
    Utility class for TTL calculation with jitter.

    Spreading expirations keeps many keys written together from
    expiring together.
    """

    @staticmethod
    def calculate_ttl_with_jitter(
        base_ttl: Union[int, TTLPreset],
        jitter_percent: float = 0.1,
        min_ttl: int = 30
    ) -> int:
        """
        Calculate TTL with random jitter to prevent expiration clustering.

        Args:
            base_ttl: Base TTL in seconds
            jitter_percent: Jitter as percentage of base TTL (0.0 to 1.0)
            min_ttl: Minimum TTL to ensure

        Returns:
            int: TTL with jitter applied

        Example:
            calculate_ttl_with_jitter(1800, 0.1)  # 1620-1980 seconds
        """
        base_seconds = int(base_ttl)
        jitter_range = int(base_seconds * jitter_percent)

        jitter = random.randint(-jitter_range, jitter_range)
        final_ttl = base_seconds + jitter

        # Never stretch a short TTL up to the minimum
        return max(final_ttl, min(min_ttl, base_seconds))


class CacheKeyManager:
    """
    Named key constructors for every key the backend writes.
    """

    def __init__(self):
        self.key_builder = CacheKeyBuilder()

    def shop_key(self, shop_id: Union[str, int]) -> str:
        """Generate cache key for a shop record."""
        return self.key_builder.build_key(CacheKeyPrefix.SHOP, shop_id)

    def shop_type_key(self) -> str:
        """Generate cache key for the shop type list."""
        return self.key_builder.build_key(CacheKeyPrefix.SHOP_TYPE)

    def shop_lock_key(self, shop_id: Union[str, int]) -> str:
        """Generate lock key guarding a shop cache rebuild."""
        return self.key_builder.build_key(CacheKeyPrefix.SHOP_LOCK, shop_id)

    def seckill_voucher_key(self, voucher_id: Union[str, int]) -> str:
        """Generate cache key for a flash-sale voucher record."""
        return self.key_builder.build_key(CacheKeyPrefix.SECKILL_VOUCHER, voucher_id)

    def seckill_stock_key(self, voucher_id: Union[str, int]) -> str:
        """Generate cache key for the admission stock counter."""
        return self.key_builder.build_key(CacheKeyPrefix.SECKILL_STOCK, voucher_id)

    def seckill_order_key(self, voucher_id: Union[str, int]) -> str:
        """Generate cache key for the set of users admitted to a voucher."""
        return self.key_builder.build_key(CacheKeyPrefix.SECKILL_ORDER, voucher_id)

    def order_lock_key(self, user_id: Union[str, int]) -> str:
        """Generate lock key serialising order persistence for one user."""
        return self.key_builder.build_key(CacheKeyPrefix.ORDER_LOCK, user_id)

    def id_counter_key(self, prefix: str, day: datetime) -> str:
        """Generate the daily counter key, e.g. ``icr:order:2024:01:15``."""
        return self.key_builder.build_key(
            CacheKeyPrefix.ID_COUNTER, prefix, day.strftime("%Y:%m:%d")
        )


# Global key manager instance
key_manager = CacheKeyManager()
