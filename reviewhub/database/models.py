"""
SQLAlchemy database models for the reviewhub backend.

This module defines the tables behind the cached records and the
flash-sale pipeline:
- Shop / ShopType: records served through the read-through cache
- SeckillVoucher: flash-sale window and durable stock counter
- VoucherOrder: persisted orders, at most one per (user, voucher)
"""

from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Float, Index
from sqlalchemy.orm import declarative_base
from datetime import datetime

# Create the declarative base for all models
Base = declarative_base()


class ShopType(Base):
    """Shop category shown on the home page."""
    __tablename__ = 'tb_shop_type'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(32), nullable=False)
    icon = Column(String(255), nullable=True)
    sort = Column(Integer, nullable=False, default=0, index=True)

    def __repr__(self):
        return f"<ShopType(id={self.id}, name='{self.name}')>"


class Shop(Base):
    """
    Shop model.

    Read through the cache by id; updates must invalidate the cached copy.
    """
    __tablename__ = 'tb_shop'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(128), nullable=False)
    type_id = Column(Integer, nullable=False, index=True)
    images = Column(String(1024), nullable=False, default="")
    area = Column(String(128), nullable=True)
    address = Column(String(255), nullable=False)

    # Coordinates
    x = Column(Float, nullable=False)
    y = Column(Float, nullable=False)

    avg_price = Column(Integer, nullable=True)
    sold = Column(Integer, nullable=False, default=0)
    comments = Column(Integer, nullable=False, default=0)
    score = Column(Integer, nullable=False, default=0)  # 1-5 stars times ten
    open_hours = Column(String(32), nullable=True)
    create_time = Column(DateTime, nullable=False, default=datetime.now)
    update_time = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    def __repr__(self):
        return f"<Shop(id={self.id}, name='{self.name}', type_id={self.type_id})>"


class SeckillVoucher(Base):
    """
    Flash-sale voucher.

    ``stock`` is the durable counter; the admission counter in the cache is
    seeded from it when the voucher is registered.
    """
    __tablename__ = 'tb_seckill_voucher'

    voucher_id = Column(BigInteger, primary_key=True, autoincrement=False)
    stock = Column(Integer, nullable=False)
    begin_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    create_time = Column(DateTime, nullable=False, default=datetime.now)
    update_time = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    def __repr__(self):
        return f"<SeckillVoucher(voucher_id={self.voucher_id}, stock={self.stock})>"


class VoucherOrder(Base):
    """
    Flash-sale order persisted by the background worker.

    The unique index backs up the per-user idempotence check.
    """
    __tablename__ = 'tb_voucher_order'

    id = Column(BigInteger, primary_key=True, autoincrement=False)  # From the id worker
    user_id = Column(BigInteger, nullable=False)
    voucher_id = Column(BigInteger, nullable=False)
    status = Column(Integer, nullable=False, default=1)  # 1 = unpaid
    create_time = Column(DateTime, nullable=False, default=datetime.now)

    __table_args__ = (
        Index('uq_voucher_order_user_voucher', 'user_id', 'voucher_id', unique=True),
    )

    def __repr__(self):
        return f"<VoucherOrder(id={self.id}, user_id={self.user_id}, voucher_id={self.voucher_id})>"


def create_all_tables(engine):
    """
    Create all database tables using the provided SQLAlchemy engine.

    Args:
        engine: SQLAlchemy engine instance
    """
    Base.metadata.create_all(bind=engine)
