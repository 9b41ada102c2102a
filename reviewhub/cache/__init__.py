"""
Caching layer for reviewhub.

This module contains Valkey client configuration, the cache manager
and key naming conventions shared by the services.
"""

from .config import (
    ValkeyConfig,
    ValkeyError,
    ValkeyConnectionError,
    ValkeyTimeoutError,
    ValkeyConfigurationError,
    ValkeyCommandError,
)
from .client import ValkeyClient
from .utils import (
    CacheKeyPrefix,
    TTLPreset,
    CacheKeyBuilder,
    TTLCalculator,
    CacheKeyManager,
    key_manager
)
from .manager import CacheManager, CacheStats

__all__ = [
    # Configuration
    "ValkeyConfig",
    "ValkeyError",
    "ValkeyConnectionError",
    "ValkeyTimeoutError",
    "ValkeyConfigurationError",
    "ValkeyCommandError",

    # Client
    "ValkeyClient",

    # Manager
    "CacheManager",
    "CacheStats",

    # Utilities
    "CacheKeyPrefix",
    "TTLPreset",
    "CacheKeyBuilder",
    "TTLCalculator",
    "CacheKeyManager",
    "key_manager",
]
