"""
Valkey cache configuration and error types.

Connection settings for the shared Valkey cache are read from VALKEY_*
environment variables (a local .env file is honoured). The exceptions here
are what the cache layer raises when the cache service cannot be used.
"""

import os
import logging
from typing import Optional, Dict, Any
from dataclasses import dataclass
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


class ValkeyError(Exception):
    """Base class for shared-cache failures."""
    pass


class ValkeyConnectionError(ValkeyError):
    """The cache could not be reached or refused the connection."""
    pass


class ValkeyTimeoutError(ValkeyError):
    """A cache command did not complete within the socket timeout."""
    pass


class ValkeyCommandError(ValkeyError):
    """The server rejected a command, e.g. a failing Lua script. Not retryable."""
    pass


class ValkeyConfigurationError(ValkeyError):
    """Connection settings are unusable."""
    pass


def _env_flag(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() in ("true", "1", "yes", "on")


@dataclass
class ValkeyConfig:
    """
    Connection settings for the shared cache.

    One instance is shared by the request threads, the rebuild pool and the
    order worker, so max_connections bounds their combined concurrency.
    """

    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    database: int = 0
    max_connections: int = 50
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0
    retry_on_timeout: bool = True
    health_check_interval: int = 30
    decode_responses: bool = True

    # Startup reconnection policy
    connect_attempts: int = 5
    backoff_initial: float = 1.0
    backoff_max: float = 30.0
    # After a failed reconnect cycle, callers fail fast for this long
    reconnect_cooldown: float = 5.0

    def __post_init__(self):
        if not 0 < self.port < 65536:
            raise ValkeyConfigurationError(f"Invalid Valkey port: {self.port}")
        if self.max_connections < 1:
            raise ValkeyConfigurationError("max_connections must be at least 1")
        if self.connect_attempts < 1:
            raise ValkeyConfigurationError("connect_attempts must be at least 1")

    @classmethod
    def from_env(cls) -> "ValkeyConfig":
        """Build settings from VALKEY_* variables, falling back to local defaults."""
        return cls(
            host=os.getenv("VALKEY_HOST", "localhost"),
            port=int(os.getenv("VALKEY_PORT", "6379")),
            password=os.getenv("VALKEY_PASSWORD") or None,
            database=int(os.getenv("VALKEY_DATABASE", "0")),
            max_connections=int(os.getenv("VALKEY_MAX_CONNECTIONS", "50")),
            socket_timeout=float(os.getenv("VALKEY_SOCKET_TIMEOUT", "5.0")),
            socket_connect_timeout=float(os.getenv("VALKEY_SOCKET_CONNECT_TIMEOUT", "5.0")),
            retry_on_timeout=_env_flag("VALKEY_RETRY_ON_TIMEOUT", True),
            health_check_interval=int(os.getenv("VALKEY_HEALTH_CHECK_INTERVAL", "30")),
            decode_responses=_env_flag("VALKEY_DECODE_RESPONSES", True),
            connect_attempts=int(os.getenv("VALKEY_CONNECT_ATTEMPTS", "5")),
            backoff_initial=float(os.getenv("VALKEY_BACKOFF_INITIAL", "1.0")),
            backoff_max=float(os.getenv("VALKEY_BACKOFF_MAX", "30.0")),
            reconnect_cooldown=float(os.getenv("VALKEY_RECONNECT_COOLDOWN", "5.0")),
        )

    def to_connection_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for a single valkey connection."""
        kwargs: Dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "db": self.database,
            "socket_timeout": self.socket_timeout,
            "socket_connect_timeout": self.socket_connect_timeout,
            "retry_on_timeout": self.retry_on_timeout,
            "decode_responses": self.decode_responses,
        }
        if self.password:
            kwargs["password"] = self.password
        return kwargs

    def to_connection_pool_kwargs(self) -> Dict[str, Any]:
        """Connection kwargs plus the pool size."""
        return {**self.to_connection_kwargs(), "max_connections": self.max_connections}

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (1-based), doubling up to backoff_max."""
        return min(self.backoff_initial * (2 ** (attempt - 1)), self.backoff_max)

    def __str__(self) -> str:
        """String representation hiding the password."""
        password_display = "***" if self.password else "None"
        return (
            f"ValkeyConfig(host={self.host}, port={self.port}, "
            f"db={self.database}, password={password_display}, "
            f"max_connections={self.max_connections})"
        )
