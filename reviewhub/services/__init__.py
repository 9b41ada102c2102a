"""
Business logic services for reviewhub.

This module contains the distributed lock, id generation, the
read-through cache client and the shop and flash-sale services.
"""

from .lock_manager import DistributedLockManager, LockInfo
from .id_worker import RedisIdWorker, IdSequenceExhaustedError
from .cache_client import CacheClient, CacheLockTimeoutError
from .shop_service import ShopService
from .voucher_order_service import VoucherOrderService, OrderQueueFullError

__all__ = [
    'DistributedLockManager',
    'LockInfo',
    'RedisIdWorker',
    'IdSequenceExhaustedError',
    'CacheClient',
    'CacheLockTimeoutError',
    'ShopService',
    'VoucherOrderService',
    'OrderQueueFullError',
]
