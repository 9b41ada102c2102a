"""
Read-through cache client with three consistency strategies.

- Pass-through: misses fall back to the store; confirmed absences are cached
  as an empty marker with a short TTL so repeated lookups of missing ids do
  not reach the store (cache penetration).
- Mutex: on a miss only the holder of a per-id distributed lock loads from
  the store; everyone else sleeps briefly and retries (cache breakdown).
- Logical expire: entries carry their own expiry and never leave the cache;
  an expired entry is served stale while one pool thread rebuilds it.
"""

import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Any, Callable, Optional, Tuple, TypeVar

from pydantic import BaseModel, TypeAdapter

from ..cache.config import ValkeyConnectionError, ValkeyError
from ..cache.manager import CacheManager
from ..cache.utils import CacheKeyBuilder, TTLPreset
from ..models.cache import LogicalExpiryEnvelope
from ..models.enums import CacheStrategy
from .lock_manager import DistributedLockManager

logger = logging.getLogger(__name__)

T = TypeVar("T")
Loader = Callable[[Any], Optional[T]]

_MISS = object()


class CacheLockTimeoutError(ValkeyConnectionError):
    """Raised when a mutex read gives up waiting for another loader."""
    pass


@lru_cache(maxsize=64)
def _adapter(model_type: Any) -> TypeAdapter:
    return TypeAdapter(model_type)


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(item) for item in value]
    return value


class CacheClient:
    """
    Generic read-through cache over CacheManager.

    Keys are ``{key_prefix}:{id}``; the per-id rebuild lock for prefix
    ``cache:shop`` is ``lock:shop:{id}``.
    """

    NULL_MARKER = ""

    def __init__(
        self,
        cache_manager: CacheManager,
        lock_manager: DistributedLockManager,
        null_ttl: int = int(TTLPreset.NULL_MARKER),
        lock_ttl: int = int(TTLPreset.LOCK),
        retry_delay: float = 0.05,
        max_retries: int = 100,
        rebuild_pool_size: int = 10,
        jitter: bool = True,
    ):
        """
        Args:
            cache_manager: Command wrapper for the shared cache
            lock_manager: Lock manager for the per-id rebuild locks
            null_ttl: TTL of empty markers in seconds
            lock_ttl: TTL of rebuild locks in seconds
            retry_delay: Seconds a mutex reader sleeps before retrying
            max_retries: Retries before a mutex read raises CacheLockTimeoutError
            rebuild_pool_size: Threads available for logical-expiry rebuilds
            jitter: Spread value TTLs to avoid synchronized expiry
        """
        self.cache = cache_manager
        self.lock_manager = lock_manager
        self.null_ttl = null_ttl
        self.lock_ttl = lock_ttl
        self.retry_delay = retry_delay
        self.max_retries = max_retries
        self.jitter = jitter
        self._executor = ThreadPoolExecutor(
            max_workers=rebuild_pool_size, thread_name_prefix="cache-rebuild"
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, key: str, value: Any, ttl: int) -> None:
        """Cache a value as JSON with a TTL in seconds."""
        payload = json.dumps(_to_jsonable(value), default=str)
        self.cache.set(key, payload, ttl, jitter=self.jitter)

    def set_with_logical_expire(self, key: str, value: Any, ttl: float) -> None:
        """Cache a value without a TTL, logically expiring ``ttl`` seconds from now."""
        envelope = LogicalExpiryEnvelope(
            data=_to_jsonable(value),
            expire_at=datetime.now() + timedelta(seconds=ttl),
        )
        self.cache.set(key, envelope.model_dump_json())

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def query_with_pass_through(
        self,
        key_prefix: str,
        id: Any,
        loader: Loader,
        ttl: int,
        model_type: Any = None,
    ) -> Optional[Any]:
        """Read-through with empty-marker caching of absent ids."""
        key = CacheKeyBuilder.build_key(key_prefix, id)

        cached = self._lookup(key, model_type)
        if cached is not _MISS:
            return cached

        return self._load_and_populate(key, id, loader, ttl)

    def query_with_mutex(
        self,
        key_prefix: str,
        id: Any,
        loader: Loader,
        ttl: int,
        model_type: Any = None,
    ) -> Optional[Any]:
        """
        Read-through where only the lock holder loads from the store.

        Raises:
            CacheLockTimeoutError: If the lock stayed busy for every retry
        """
        key = CacheKeyBuilder.build_key(key_prefix, id)
        lock_key = self._lock_key(key_prefix, id)

        for attempt in range(self.max_retries + 1):
            cached = self._lookup(key, model_type)
            if cached is not _MISS:
                return cached

            token = self.lock_manager.owner_token()
            if self.lock_manager.try_acquire(lock_key, self.lock_ttl, token):
                try:
                    # Another holder may have populated the key before we got the lock
                    cached = self._lookup(key, model_type)
                    if cached is not _MISS:
                        return cached
                    return self._load_and_populate(key, id, loader, ttl)
                finally:
                    self.lock_manager.release(lock_key, token)

            time.sleep(self.retry_delay)

        logger.warning(f"Gave up waiting for {lock_key} after {self.max_retries} retries")
        raise CacheLockTimeoutError(f"Timed out waiting for cache rebuild of {key}")

    def query_with_logical_expire(
        self,
        key_prefix: str,
        id: Any,
        loader: Loader,
        ttl: float,
        model_type: Any = None,
    ) -> Optional[Any]:
        """
        Serve the cached value, rebuilding it in the background once expired.

        A cold miss returns None without touching the store; keys must be
        warmed with set_with_logical_expire.
        """
        key = CacheKeyBuilder.build_key(key_prefix, id)
        lock_key = self._lock_key(key_prefix, id)

        payload = self.cache.get(key)
        if payload is None:
            logger.debug(f"Logical-expiry cold miss: {key}")
            return None

        try:
            envelope = LogicalExpiryEnvelope.model_validate_json(payload)
            data = self._restore(envelope.data, model_type)
        except ValueError as e:
            logger.warning(f"Discarding unreadable envelope at {key}: {e}")
            self._schedule_rebuild(key, lock_key, id, loader, ttl)
            return None

        if not envelope.is_expired():
            return data

        self._schedule_rebuild(key, lock_key, id, loader, ttl)
        return data

    def read(
        self,
        key_prefix: str,
        id: Any,
        loader: Loader,
        ttl: int,
        strategy: CacheStrategy = CacheStrategy.PASS_THROUGH,
        model_type: Any = None,
    ) -> Optional[Any]:
        """Read an entry with the chosen strategy."""
        if strategy is CacheStrategy.PASS_THROUGH:
            return self.query_with_pass_through(key_prefix, id, loader, ttl, model_type)
        if strategy is CacheStrategy.MUTEX:
            return self.query_with_mutex(key_prefix, id, loader, ttl, model_type)
        if strategy is CacheStrategy.LOGICAL_EXPIRE:
            return self.query_with_logical_expire(key_prefix, id, loader, ttl, model_type)
        raise ValueError(f"Unknown cache strategy: {strategy}")

    def close(self) -> None:
        """Wait for in-flight rebuilds and stop the rebuild pool."""
        self._executor.shutdown(wait=True)
        logger.info("Cache rebuild pool shut down")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _lock_key(key_prefix: str, id: Any) -> str:
        prefix = str(getattr(key_prefix, "value", key_prefix))
        if prefix.startswith("cache:"):
            prefix = prefix[len("cache:"):]
        return CacheKeyBuilder.build_key("lock", prefix, id)

    @staticmethod
    def _restore(data: Any, model_type: Any) -> Any:
        if data is None or model_type is None:
            return data
        return _adapter(model_type).validate_python(data)

    def _lookup(self, key: str, model_type: Any) -> Any:
        """Return the cached value, None for an empty marker, or _MISS."""
        payload = self.cache.get(key)
        if payload is None:
            return _MISS
        if payload == self.NULL_MARKER:
            logger.debug(f"Empty marker hit: {key}")
            return None

        try:
            return self._restore(json.loads(payload), model_type)
        except ValueError as e:
            logger.warning(f"Treating unreadable cache entry {key} as a miss: {e}")
            return _MISS

    def _is_fresh(self, key: str) -> bool:
        payload = self.cache.get(key)
        if payload is None:
            return False
        try:
            return not LogicalExpiryEnvelope.model_validate_json(payload).is_expired()
        except ValueError:
            return False

    def _load_and_populate(self, key: str, id: Any, loader: Loader, ttl: int) -> Optional[Any]:
        value = loader(id)
        if value is None:
            self.cache.set(key, self.NULL_MARKER, self.null_ttl)
            return None

        self.set(key, value, ttl)
        return value

    def _schedule_rebuild(self, key: str, lock_key: str, id: Any, loader: Loader, ttl: float) -> None:
        token = self.lock_manager.owner_token()
        if not self.lock_manager.try_acquire(lock_key, self.lock_ttl, token):
            logger.debug(f"Rebuild of {key} already in progress")
            return

        # A rebuild may have finished between our read and the lock
        if self._is_fresh(key):
            logger.debug(f"{key} was rebuilt by another reader")
            self.lock_manager.release(lock_key, token)
            return

        try:
            self._executor.submit(self._rebuild, key, lock_key, token, id, loader, ttl)
        except RuntimeError:
            self.lock_manager.release(lock_key, token)
            raise

    def _rebuild(self, key: str, lock_key: str, token: str, id: Any, loader: Loader, ttl: float) -> None:
        try:
            value = loader(id)
            self.set_with_logical_expire(key, value, ttl)
            logger.info(f"Rebuilt logical-expiry entry {key}")
        except Exception:
            logger.exception(f"Cache rebuild failed for {key}")
        finally:
            try:
                self.lock_manager.release(lock_key, token)
            except ValkeyError as e:
                logger.warning(f"Could not release {lock_key} after rebuild: {e}")
