"""
Environment configuration loader with validation for reviewhub.
"""

import os
import logging
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("true", "1", "yes", "on")


class AppConfig(BaseModel):
    """Application tunables with validation."""

    # Database Configuration (None lets DatabaseConfig build it from DB_* variables)
    database_url: Optional[str] = Field(default=None, description="Database connection URL")

    log_level: str = Field(default="INFO", description="Logging level")

    # Cache access layer
    cache_null_ttl: int = Field(
        default=120, ge=1, description="TTL of empty markers in seconds"
    )
    cache_shop_ttl: int = Field(
        default=1800, ge=1, description="TTL of cached shop records in seconds"
    )
    cache_lock_ttl: int = Field(
        default=10, ge=1, le=300, description="TTL of cache rebuild locks in seconds"
    )
    cache_retry_delay_ms: int = Field(
        default=50, ge=1, le=10000, description="Sleep between mutex read retries"
    )
    cache_max_retries: int = Field(
        default=100, ge=0, description="Mutex read retries before giving up"
    )
    cache_rebuild_pool_size: int = Field(
        default=10, ge=1, le=256, description="Threads for logical-expiry rebuilds"
    )
    cache_ttl_jitter: bool = Field(
        default=True, description="Spread value TTLs by +/-10%"
    )

    # Circuit breaker
    circuit_breaker_threshold: int = Field(
        default=5, ge=1, description="Consecutive cache failures before failing fast"
    )
    circuit_breaker_timeout: int = Field(
        default=60, ge=1, description="Seconds before a tripped breaker allows a retry"
    )

    # Flash-sale pipeline
    order_queue_capacity: int = Field(
        default=50000, ge=1, description="Maximum pending order tasks"
    )
    order_lock_ttl: int = Field(
        default=10, ge=1, le=300, description="TTL of the per-user order lock in seconds"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_lock_covers_retries(self) -> "AppConfig":
        """A mutex reader should be able to outwait one lock holder."""
        budget_ms = self.cache_max_retries * self.cache_retry_delay_ms
        if self.cache_max_retries and budget_ms < self.cache_lock_ttl * 1000:
            logger.warning(
                f"Mutex retry budget ({budget_ms}ms) is shorter than the lock TTL ({self.cache_lock_ttl}s)"
            )
        return self

    @property
    def cache_retry_delay(self) -> float:
        """Retry delay in seconds."""
        return self.cache_retry_delay_ms / 1000


def load_config(env_file: Optional[str] = None) -> AppConfig:
    """
    Load configuration from environment variables and .env file.

    Args:
        env_file: Optional path to .env file. If None, looks for .env in current directory.

    Returns:
        AppConfig: Validated configuration object

    Raises:
        ValueError: If configuration is invalid
    """
    if env_file is None:
        env_file = ".env"

    if os.path.exists(env_file):
        load_dotenv(env_file)

    try:
        config_data: Dict[str, Any] = {
            "database_url": os.getenv("DATABASE_URL") or None,
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
            "cache_null_ttl": int(os.getenv("CACHE_NULL_TTL", "120")),
            "cache_shop_ttl": int(os.getenv("CACHE_SHOP_TTL", "1800")),
            "cache_lock_ttl": int(os.getenv("CACHE_LOCK_TTL", "10")),
            "cache_retry_delay_ms": int(os.getenv("CACHE_RETRY_DELAY_MS", "50")),
            "cache_max_retries": int(os.getenv("CACHE_MAX_RETRIES", "100")),
            "cache_rebuild_pool_size": int(os.getenv("CACHE_REBUILD_POOL_SIZE", "10")),
            "cache_ttl_jitter": os.getenv("CACHE_TTL_JITTER", "true").lower() in _TRUE_VALUES,
            "circuit_breaker_threshold": int(os.getenv("CIRCUIT_BREAKER_THRESHOLD", "5")),
            "circuit_breaker_timeout": int(os.getenv("CIRCUIT_BREAKER_TIMEOUT", "60")),
            "order_queue_capacity": int(os.getenv("ORDER_QUEUE_CAPACITY", "50000")),
            "order_lock_ttl": int(os.getenv("ORDER_LOCK_TTL", "10")),
        }
        return AppConfig(**config_data)
    except ValueError as e:
        raise ValueError(f"Configuration validation failed: {e}") from e


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """
    Get the global configuration instance, loading it if necessary.

    Returns:
        AppConfig: The global configuration object
    """
    global _config
    if _config is None:
        _config = load_config()
        logger.info(f"Configuration loaded (log level {_config.log_level})")
    return _config
