"""
Connection holder for the shared Valkey cache.

ValkeyClient owns the connection pool used by every component of the
process: request threads, the cache rebuild pool and the order worker. It
connects with exponential backoff and re-validates the connection with a
periodic ping before commands are issued. While one thread is reconnecting,
or shortly after a reconnect failed, other callers get ValkeyConnectionError
at once instead of queueing behind the backoff.
"""

import logging
import threading
import time
from typing import Optional, Any, Dict

import valkey
from valkey.connection import ConnectionPool
from valkey.exceptions import ConnectionError, TimeoutError

from .config import ValkeyConfig, ValkeyConnectionError

logger = logging.getLogger(__name__)

_NETWORK_ERRORS = (ConnectionError, TimeoutError, OSError)


class ValkeyClient:
    """
    Pooled, self-healing connection to Valkey.

    Usage:
        with ValkeyClient(ValkeyConfig.from_env()) as client:
            client.client.get("cache:shop:1")
    """

    def __init__(self, config: Optional[ValkeyConfig] = None):
        self.config = config or ValkeyConfig.from_env()
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[valkey.Valkey] = None
        self._healthy = False
        self._last_ping = 0.0
        self._failed_attempts = 0
        self._last_failure: Optional[float] = None
        self._lock = threading.Lock()

        logger.info(f"Initializing Valkey client: {self.config}")

    def connect(self, wait: bool = True) -> None:
        """
        Open the pool, retrying with exponential backoff.

        Args:
            wait: Block while another thread is reconnecting; when False, fail instead

        Raises:
            ValkeyConnectionError: After config.connect_attempts failed pings, within
                config.reconnect_cooldown of a failed cycle, or when wait is False
                and another thread is already reconnecting
        """
        if not self._lock.acquire(blocking=wait):
            raise ValkeyConnectionError("Valkey reconnect already in progress")
        try:
            if self._healthy:
                return

            if self._last_failure is not None:
                since = time.monotonic() - self._last_failure
                if since < self.config.reconnect_cooldown:
                    raise ValkeyConnectionError(f"Valkey unavailable, last reconnect failed {since:.1f}s ago")

            for attempt in range(1, self.config.connect_attempts + 1):
                try:
                    self._open_pool()
                    self._ping()
                except (*_NETWORK_ERRORS, ValkeyConnectionError) as e:
                    self._failed_attempts = attempt
                    self._close_pool()
                    if attempt == self.config.connect_attempts:
                        self._last_failure = time.monotonic()
                        logger.error(f"Giving up on Valkey after {attempt} attempts: {e}")
                        raise ValkeyConnectionError(
                            f"Could not connect to Valkey at {self.config.host}:{self.config.port}: {e}"
                        ) from e

                    delay = self.config.backoff_delay(attempt)
                    logger.warning(f"Valkey connection attempt {attempt} failed ({e}), retrying in {delay:.1f}s")
                    time.sleep(delay)
                else:
                    self._healthy = True
                    self._failed_attempts = 0
                    self._last_failure = None
                    self._last_ping = time.time()
                    logger.info(f"Connected to Valkey at {self.config.host}:{self.config.port}")
                    return
        finally:
            self._lock.release()

    def disconnect(self) -> None:
        """Close every pooled connection."""
        with self._lock:
            if self._pool is not None:
                self._close_pool()
                logger.info("Disconnected from Valkey server")

    def _open_pool(self) -> None:
        if self._pool is not None:
            self._close_pool()
        self._pool = ConnectionPool(**self.config.to_connection_pool_kwargs())
        self._client = valkey.Valkey(connection_pool=self._pool)

    def _close_pool(self) -> None:
        try:
            if self._pool is not None:
                self._pool.disconnect()
        finally:
            self._pool = None
            self._client = None
            self._healthy = False

    def _ping(self) -> None:
        if self._client is None:
            raise ValkeyConnectionError("Client not initialized")
        try:
            ok = self._client.ping()
        except _NETWORK_ERRORS as e:
            raise ValkeyConnectionError(f"Ping failed: {e}") from e
        if not ok:
            raise ValkeyConnectionError("Ping returned False")

    def health_check(self, force: bool = False) -> bool:
        """
        Ping the server, at most once per health_check_interval unless forced.

        Returns:
            bool: Whether the connection is usable
        """
        now = time.time()
        if not force and now - self._last_ping < self.config.health_check_interval:
            return self._healthy
        self._last_ping = now

        if not self._healthy:
            return False

        try:
            self._ping()
        except ValkeyConnectionError as e:
            logger.warning(f"Valkey health check failed: {e}")
            self._healthy = False
            return False
        return True

    def ensure_connection(self) -> None:
        """Reconnect if the last health check failed."""
        if not self.health_check():
            logger.info("Valkey connection unhealthy, reconnecting")
            self.connect(wait=False)

    @property
    def is_connected(self) -> bool:
        return self._healthy and self._client is not None

    @property
    def client(self) -> valkey.Valkey:
        """
        The raw valkey client.

        Raises:
            ValkeyConnectionError: If connect() has not succeeded
        """
        if not self.is_connected:
            raise ValkeyConnectionError("Client not connected. Call connect() first.")
        return self._client

    def get_connection_info(self) -> Dict[str, Any]:
        """Connection state and a few server statistics for the check command."""
        info: Dict[str, Any] = {
            "is_connected": self.is_connected,
            "config": str(self.config),
            "failed_attempts": self._failed_attempts,
        }
        if not self.is_connected:
            return info

        try:
            server = self._client.info("server")
        except _NETWORK_ERRORS as e:
            info["server_info_error"] = str(e)
            return info

        info["server_version"] = server.get("valkey_version", server.get("redis_version", "unknown"))
        info["uptime_seconds"] = server.get("uptime_in_seconds", 0)
        return info

    def __enter__(self) -> "ValkeyClient":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
