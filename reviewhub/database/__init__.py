"""
Database layer for reviewhub.

SQLAlchemy table models, engine/session configuration and the
repositories the services use as their backing store.
"""

from .models import Base, Shop, ShopType, SeckillVoucher, VoucherOrder, create_all_tables
from .config import DatabaseConfig
from .repository import ShopRepository, SeckillVoucherRepository, VoucherOrderRepository

__all__ = [
    'Base',
    'Shop',
    'ShopType',
    'SeckillVoucher',
    'VoucherOrder',
    'create_all_tables',
    'DatabaseConfig',
    'ShopRepository',
    'SeckillVoucherRepository',
    'VoucherOrderRepository',
]
