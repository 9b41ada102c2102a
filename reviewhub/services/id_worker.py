"""
Globally unique, time-ordered 64-bit ids.

An id is the number of seconds since 2022-01-01T00:00:00Z shifted left by
32 bits, OR-ed with a per-prefix daily counter kept in Valkey. Any number of
processes can generate ids concurrently because the counter lives in the
shared cache rather than on one machine.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ..cache.manager import CacheManager
from ..cache.utils import TTLPreset

logger = logging.getLogger(__name__)


class IdSequenceExhaustedError(Exception):
    """Raised when a daily counter would no longer fit in 32 bits."""
    pass


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RedisIdWorker:
    """Monotonic id generator keyed by business prefix (``order``, ...)."""

    BEGIN_TIMESTAMP = 1640995200
    COUNT_BITS = 32
    MAX_SEQUENCE = (1 << COUNT_BITS) - 1

    def __init__(self, cache_manager: CacheManager, clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            cache_manager: CacheManager used for the INCR counters
            clock: Returns the current aware UTC datetime; replaceable in tests
        """
        self.cache = cache_manager
        self._clock = clock or _utc_now

    def next_id(self, prefix: str) -> int:
        """
        Generate the next id for a prefix.

        Raises:
            ValkeyError: If the cache is unavailable
            IdSequenceExhaustedError: If more than 2**32 - 1 ids were issued today
        """
        now = self._clock().astimezone(timezone.utc)
        timestamp = int(now.timestamp()) - self.BEGIN_TIMESTAMP

        counter_key = self.cache.keys.id_counter_key(prefix, now)
        count = self.cache.incr(counter_key)
        if count == 1:
            self.cache.expire(counter_key, int(TTLPreset.ID_COUNTER))

        if count > self.MAX_SEQUENCE:
            logger.error(f"Id sequence exhausted for {counter_key}")
            raise IdSequenceExhaustedError(f"Daily counter {counter_key} exceeded {self.MAX_SEQUENCE}")

        return timestamp << self.COUNT_BITS | count

    @classmethod
    def timestamp_of(cls, generated_id: int) -> int:
        """Unix seconds encoded in an id."""
        return (generated_id >> cls.COUNT_BITS) + cls.BEGIN_TIMESTAMP
