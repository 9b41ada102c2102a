"""
Distributed lock manager backed by Valkey.

This module implements a named mutual-exclusion lock using Valkey SET with
NX and an expiry. The stored value identifies the owning process and thread,
and release goes through a Lua script so a holder whose lock already expired
can never delete a lock that now belongs to someone else.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Iterator

from ..cache.manager import CacheManager

logger = logging.getLogger(__name__)


@dataclass
class LockInfo:
    """Information about a lock held by this process."""
    lock_key: str
    owner_token: str
    acquired_at: datetime
    ttl_seconds: float

    @property
    def expires_at(self) -> datetime:
        return self.acquired_at + timedelta(seconds=self.ttl_seconds)

    @property
    def is_expired(self) -> bool:
        """Check if the lock TTL has run out since acquisition."""
        return datetime.now() > self.expires_at


class DistributedLockManager:
    """
    Non-blocking distributed lock using Valkey SET with NX and an expiry.

    Features:
    - Atomic acquisition with TTL; a failed attempt returns immediately
    - Owner-checked release through a server-side script
    - TTL expiry as the only deadlock recovery
    - Explicit tokens so another thread can release on the holder's behalf
    """

    UNLOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

    def __init__(self, cache_manager: CacheManager, instance_id: Optional[str] = None):
        """
        Initialize distributed lock manager.

        Args:
            cache_manager: CacheManager instance for lock operations
            instance_id: Process-unique prefix for owner tokens (random if omitted)
        """
        self.cache = cache_manager
        self.instance_id = instance_id or uuid.uuid4().hex

        logger.info(f"DistributedLockManager initialized with instance ID: {self.instance_id}")

    def owner_token(self) -> str:
        """Token identifying the calling thread of this process."""
        return f"{self.instance_id}-{threading.get_ident()}"

    def try_acquire(self, lock_key: str, ttl_seconds: float, token: Optional[str] = None) -> bool:
        """
        Try once to take the lock.

        Args:
            lock_key: Full cache key of the lock
            ttl_seconds: Lock expiry; must be positive
            token: Owner token to store, defaults to the calling thread's token

        Returns:
            True if the lock was free and is now held, False if busy

        Raises:
            ValkeyError: If the cache is unavailable
        """
        if ttl_seconds <= 0:
            raise ValueError("Lock TTL must be positive")

        token = token or self.owner_token()
        acquired = self.cache.set_if_absent(lock_key, token, ttl_seconds)
        if acquired:
            logger.debug(f"Lock acquired: {lock_key} by {token}")
        else:
            logger.debug(f"Lock busy: {lock_key}")
        return acquired

    def release(self, lock_key: str, token: Optional[str] = None) -> bool:
        """
        Release the lock if the caller still owns it.

        Args:
            lock_key: Full cache key of the lock
            token: Token used at acquisition, defaults to the calling thread's token

        Returns:
            True if the lock was deleted, False if it was not ours (or already gone)
        """
        token = token or self.owner_token()
        result = self.cache.eval(self.UNLOCK_SCRIPT, [lock_key], [token])

        released = bool(result)
        if released:
            logger.debug(f"Lock released: {lock_key}")
        else:
            logger.warning(f"Lock release skipped (not owner): {lock_key}")
        return released

    @contextmanager
    def lock_context(self, lock_key: str, ttl_seconds: float) -> Iterator[Optional[LockInfo]]:
        """
        Context manager for automatic lock acquisition and release.

        Usage:
            with lock_manager.lock_context(key, 10) as lock:
                if lock:
                    # Lock acquired, perform protected operation
                    ...
                else:
                    # Busy, handle appropriately
                    ...
        """
        token = self.owner_token()
        lock_info = None
        if self.try_acquire(lock_key, ttl_seconds, token):
            lock_info = LockInfo(
                lock_key=lock_key,
                owner_token=token,
                acquired_at=datetime.now(),
                ttl_seconds=ttl_seconds,
            )

        try:
            yield lock_info
        finally:
            if lock_info:
                self.release(lock_key, token)

    def get_lock_status(self, lock_key: str) -> Optional[Dict[str, Any]]:
        """
        Get status of a lock.

        Args:
            lock_key: Full cache key of the lock

        Returns:
            Lock status information or None if no lock exists
        """
        lock_value = self.cache.get(lock_key)
        if lock_value is None:
            return None

        ttl = self.cache.get_ttl(lock_key)
        owner_id = lock_value.rsplit("-", 1)[0]

        return {
            "lock_key": lock_key,
            "lock_value": lock_value,
            "owner_id": owner_id,
            "is_owned_by_us": owner_id == self.instance_id,
            "ttl_seconds": ttl or 0,
            "exists": True,
        }
