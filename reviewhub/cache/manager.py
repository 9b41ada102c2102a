"""
Cache manager with error translation and a circuit breaker.

This module provides the command-level cache abstraction the services
build on. It wraps Valkey operations with statistics, translates client
errors into the cache layer's own exceptions and fails fast while the
cache is known to be down.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Sequence, TypeVar, Union
from datetime import datetime
from dataclasses import dataclass, field

import valkey
from valkey.exceptions import ConnectionError, TimeoutError, ResponseError

from .client import ValkeyClient
from .config import ValkeyCommandError, ValkeyConnectionError, ValkeyTimeoutError
from .utils import CacheKeyManager, TTLCalculator, TTLPreset, key_manager

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheStats:
    """Cache operation statistics."""

    hit_count: int = 0
    miss_count: int = 0
    error_count: int = 0
    set_count: int = 0
    delete_count: int = 0
    total_operations: int = 0

    # Performance metrics
    total_response_time_ms: float = 0.0
    max_response_time_ms: float = 0.0

    # Error tracking
    connection_errors: int = 0
    timeout_errors: int = 0
    other_errors: int = 0
    rejected_operations: int = 0

    start_time: datetime = field(default_factory=datetime.now)

    @property
    def hit_ratio(self) -> float:
        """Calculate cache hit ratio."""
        total_reads = self.hit_count + self.miss_count
        return self.hit_count / total_reads if total_reads > 0 else 0.0

    @property
    def avg_response_time_ms(self) -> float:
        """Calculate average response time."""
        return (self.total_response_time_ms / self.total_operations
                if self.total_operations > 0 else 0.0)

    def to_dict(self) -> Dict[str, Any]:
        """Convert stats to dictionary."""
        return {
            "hit_count": self.hit_count,
            "miss_count": self.miss_count,
            "error_count": self.error_count,
            "set_count": self.set_count,
            "delete_count": self.delete_count,
            "total_operations": self.total_operations,
            "hit_ratio": self.hit_ratio,
            "avg_response_time_ms": self.avg_response_time_ms,
            "max_response_time_ms": self.max_response_time_ms,
            "connection_errors": self.connection_errors,
            "timeout_errors": self.timeout_errors,
            "other_errors": self.other_errors,
            "rejected_operations": self.rejected_operations,
            "uptime_seconds": (datetime.now() - self.start_time).total_seconds(),
        }


class CacheManager:
    """
    Thread-safe command wrapper over a connected ValkeyClient.

    Features:
    - Translation of client errors into ValkeyConnectionError / ValkeyTimeoutError
    - Circuit breaker that fails fast after repeated connection failures
    - Operation statistics
    - Optional TTL jitter on value writes
    """

    def __init__(
        self,
        client: ValkeyClient,
        circuit_breaker_threshold: int = 5,
        circuit_breaker_timeout: int = 60,
        key_manager: CacheKeyManager = key_manager,
    ):
        """
        Initialize cache manager.

        Args:
            client: ValkeyClient instance (connected lazily on first use)
            circuit_breaker_threshold: Consecutive failures before circuit opens
            circuit_breaker_timeout: Seconds to wait before retrying after circuit opens
            key_manager: Key naming helper shared by the services
        """
        self.client = client
        self.keys = key_manager
        self.ttl_calculator = TTLCalculator()

        self.stats = CacheStats()
        self._stats_lock = threading.Lock()

        # Circuit breaker
        self.circuit_breaker_threshold = circuit_breaker_threshold
        self.circuit_breaker_timeout = circuit_breaker_timeout
        self.consecutive_failures = 0
        self.circuit_open_time: Optional[float] = None
        self.is_circuit_open = False

        logger.info(f"CacheManager initialized (circuit breaker threshold={circuit_breaker_threshold})")

    def _record_operation(self, operation_type: str, response_time_ms: float) -> None:
        """Record a successful operation."""
        with self._stats_lock:
            self.stats.total_operations += 1
            self.stats.total_response_time_ms += response_time_ms
            if response_time_ms > self.stats.max_response_time_ms:
                self.stats.max_response_time_ms = response_time_ms

            if operation_type == "set":
                self.stats.set_count += 1
            elif operation_type == "delete":
                self.stats.delete_count += 1

            self.consecutive_failures = 0
            if self.is_circuit_open:
                self.is_circuit_open = False
                self.circuit_open_time = None
                logger.info("Circuit breaker closed after successful operation")

    def _record_read(self, hit: bool) -> None:
        with self._stats_lock:
            if hit:
                self.stats.hit_count += 1
            else:
                self.stats.miss_count += 1

    def _record_error(self, error: Exception) -> None:
        """Record and categorize errors."""
        with self._stats_lock:
            self.stats.total_operations += 1
            self.stats.error_count += 1

            if isinstance(error, (ConnectionError, ValkeyConnectionError)):
                self.stats.connection_errors += 1
            elif isinstance(error, TimeoutError):
                self.stats.timeout_errors += 1
            else:
                self.stats.other_errors += 1
                # Server-side command errors say nothing about availability
                return

            self.consecutive_failures += 1
            if self.consecutive_failures >= self.circuit_breaker_threshold and not self.is_circuit_open:
                self.is_circuit_open = True
                self.circuit_open_time = time.monotonic()
                logger.warning(
                    f"Circuit breaker opened after {self.consecutive_failures} consecutive failures"
                )

    def _is_circuit_breaker_open(self) -> bool:
        """Check if circuit breaker should remain open."""
        with self._stats_lock:
            if not self.is_circuit_open or self.circuit_open_time is None:
                return False

            elapsed = time.monotonic() - self.circuit_open_time
            if elapsed >= self.circuit_breaker_timeout:
                logger.info("Circuit breaker timeout expired, allowing retry")
                return False

            self.stats.rejected_operations += 1
            return True

    def _execute(self, operation_type: str, operation: Callable[[valkey.Valkey], T]) -> T:
        """
        Run one command against the cache.

        Args:
            operation_type: Name used for statistics
            operation: Callable receiving the raw Valkey client

        Returns:
            The command result

        Raises:
            ValkeyConnectionError: Cache unreachable or circuit open
            ValkeyTimeoutError: Command timed out
            ValkeyCommandError: Server rejected the command
        """
        if self._is_circuit_breaker_open():
            raise ValkeyConnectionError("Circuit breaker is open, cache unavailable")

        start_time = time.time()
        try:
            self.client.ensure_connection()
            result = operation(self.client.client)
        except ConnectionError as e:
            self._record_error(e)
            logger.warning(f"Cache {operation_type} failed: {e}")
            raise ValkeyConnectionError(f"Cache {operation_type} failed: {e}") from e
        except TimeoutError as e:
            self._record_error(e)
            logger.warning(f"Cache {operation_type} timed out: {e}")
            raise ValkeyTimeoutError(f"Cache {operation_type} timed out: {e}") from e
        except ResponseError as e:
            self._record_error(e)
            logger.warning(f"Cache {operation_type} rejected: {e}")
            raise ValkeyCommandError(f"Cache {operation_type} rejected: {e}") from e
        except ValkeyConnectionError as e:
            self._record_error(e)
            logger.warning(f"Cache {operation_type} failed: {e}")
            raise

        self._record_operation(operation_type, (time.time() - start_time) * 1000)
        return result

    def get(self, key: str) -> Optional[str]:
        """
        Get the raw string stored at a key.

        Returns:
            The stored string (possibly empty) or None when the key is missing
        """
        result = self._execute("get", lambda c: c.get(key))
        self._record_read(result is not None)
        logger.debug(f"Cache {'hit' if result is not None else 'miss'} for key {key}")
        return result

    def set(
        self,
        key: str,
        value: str,
        ttl: Optional[Union[int, TTLPreset]] = None,
        jitter: bool = False
    ) -> bool:
        """
        Set a string value with optional TTL and jitter.

        Args:
            key: Cache key
            value: Serialized value
            ttl: Time to live in seconds; None stores without expiry
            jitter: Apply jitter to TTL to prevent clustering

        Returns:
            True if the server acknowledged the write
        """
        final_ttl = None
        if ttl is not None:
            base_ttl = int(ttl)
            final_ttl = self.ttl_calculator.calculate_ttl_with_jitter(base_ttl) if jitter else base_ttl

        if final_ttl:
            return bool(self._execute("set", lambda c: c.setex(key, final_ttl, value)))
        return bool(self._execute("set", lambda c: c.set(key, value)))

    def set_if_absent(self, key: str, value: str, ttl_seconds: float) -> bool:
        """SET key value NX with an expiry; True only when the key was absent."""
        ttl_ms = max(int(ttl_seconds * 1000), 1)
        return bool(self._execute("set", lambda c: c.set(key, value, px=ttl_ms, nx=True)))

    def delete(self, key: str) -> bool:
        """Delete a key; True if it existed."""
        return bool(self._execute("delete", lambda c: c.delete(key)))

    def incr(self, key: str) -> int:
        """Atomically increment a counter."""
        return int(self._execute("incr", lambda c: c.incr(key)))

    def expire(self, key: str, seconds: int) -> bool:
        return bool(self._execute("expire", lambda c: c.expire(key, seconds)))

    def get_ttl(self, key: str) -> Optional[int]:
        """
        Get remaining TTL for key.

        Returns:
            Remaining TTL in seconds, None if key doesn't exist or has no TTL
        """
        result = self._execute("ttl", lambda c: c.ttl(key))
        return result if result is not None and result >= 0 else None

    def eval(self, script: str, keys: Sequence[str], args: Sequence[Any]) -> Any:
        """Execute a Lua script atomically on the server."""
        return self._execute("eval", lambda c: c.eval(script, len(keys), *keys, *args))

    def sismember(self, key: str, member: Any) -> bool:
        return bool(self._execute("sismember", lambda c: c.sismember(key, member)))

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache manager statistics.

        Returns:
            Dict containing performance and error statistics
        """
        with self._stats_lock:
            stats = self.stats.to_dict()
            stats.update({
                "circuit_breaker_open": self.is_circuit_open,
                "consecutive_failures": self.consecutive_failures,
            })
        return stats

    def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check against the cache server.

        Returns:
            Dict containing health status and diagnostics
        """
        health: Dict[str, Any] = {
            "status": "unknown",
            "cache_available": False,
            "circuit_breaker_open": self.is_circuit_open,
            "errors": [],
        }

        try:
            self.client.ensure_connection()
            healthy = self.client.health_check(force=True)
        except ValkeyConnectionError as e:
            health.update({"status": "unhealthy", "errors": [str(e)]})
            return health

        if healthy:
            health.update({"status": "healthy", "cache_available": True})
        else:
            health.update({"status": "unhealthy", "errors": ["Ping failed"]})
        health["connection_info"] = self.client.get_connection_info()
        return health

    def close(self) -> None:
        """Close cache manager and release its connections."""
        self.client.disconnect()
        logger.info("CacheManager closed")

