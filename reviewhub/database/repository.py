"""
Repositories implementing the backing-store contract.

Each repository method opens its own session unless the caller passes one,
so several calls can share a single transaction (stock decrement and order
insert in the order worker).
"""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..models.shop import ShopModel, ShopTypeModel
from ..models.voucher import SeckillVoucherModel, VoucherOrderModel
from .config import DatabaseConfig
from .models import Shop, ShopType, SeckillVoucher, VoucherOrder

logger = logging.getLogger(__name__)


class _Repository:
    def __init__(self, db_config: DatabaseConfig):
        self.db = db_config

    @contextmanager
    def _session_scope(self, session: Optional[Session]) -> Iterator[Session]:
        if session is not None:
            yield session
        else:
            with self.db.get_session_context() as own_session:
                yield own_session


class ShopRepository(_Repository):
    """Point lookups and updates of shops."""

    def get_by_id(self, shop_id: int) -> Optional[ShopModel]:
        with self._session_scope(None) as session:
            shop = session.get(Shop, shop_id)
            return ShopModel.model_validate(shop) if shop else None

    def list_types(self) -> List[ShopTypeModel]:
        with self._session_scope(None) as session:
            rows = session.scalars(select(ShopType).order_by(ShopType.sort)).all()
            return [ShopTypeModel.model_validate(row) for row in rows]

    def insert(self, shop: ShopModel) -> ShopModel:
        with self._session_scope(None) as session:
            row = Shop(**shop.model_dump(exclude_none=True))
            session.add(row)
            session.flush()
            return ShopModel.model_validate(row)

    def insert_type(self, shop_type: ShopTypeModel) -> ShopTypeModel:
        with self._session_scope(None) as session:
            row = ShopType(**shop_type.model_dump(exclude_none=True))
            session.add(row)
            session.flush()
            return ShopTypeModel.model_validate(row)

    def update(self, shop: ShopModel) -> bool:
        """Overwrite a shop's columns; False if the id does not exist."""
        values = shop.model_dump(exclude={"id", "create_time", "update_time"})
        with self._session_scope(None) as session:
            result = session.execute(update(Shop).where(Shop.id == shop.id).values(**values))
            return result.rowcount > 0


class SeckillVoucherRepository(_Repository):
    """Flash-sale vouchers and their durable stock."""

    def get_by_id(self, voucher_id: int) -> Optional[SeckillVoucherModel]:
        with self._session_scope(None) as session:
            voucher = session.get(SeckillVoucher, voucher_id)
            return SeckillVoucherModel.model_validate(voucher) if voucher else None

    def insert(self, voucher: SeckillVoucherModel) -> None:
        with self._session_scope(None) as session:
            session.add(SeckillVoucher(**voucher.model_dump()))

    def decrement_stock(self, voucher_id: int, session: Optional[Session] = None) -> bool:
        """
        Conditionally take one unit of stock.

        Returns:
            True if a row was updated, False if the stock was already zero
        """
        with self._session_scope(session) as session:
            result = session.execute(
                update(SeckillVoucher)
                .where(SeckillVoucher.voucher_id == voucher_id, SeckillVoucher.stock > 0)
                .values(stock=SeckillVoucher.stock - 1)
            )
            return result.rowcount > 0


class VoucherOrderRepository(_Repository):
    """Persisted flash-sale orders."""

    def count_by_user_and_voucher(self, user_id: int, voucher_id: int, session: Optional[Session] = None) -> int:
        with self._session_scope(session) as session:
            return session.scalar(
                select(func.count())
                .select_from(VoucherOrder)
                .where(VoucherOrder.user_id == user_id, VoucherOrder.voucher_id == voucher_id)
            )

    def insert(self, order: VoucherOrderModel, session: Optional[Session] = None) -> None:
        with self._session_scope(session) as session:
            session.add(VoucherOrder(**order.model_dump()))

    def get_by_id(self, order_id: int) -> Optional[VoucherOrderModel]:
        with self._session_scope(None) as session:
            order = session.get(VoucherOrder, order_id)
            return VoucherOrderModel.model_validate(order) if order else None

    def list_by_voucher(self, voucher_id: int) -> List[VoucherOrderModel]:
        with self._session_scope(None) as session:
            rows = session.scalars(
                select(VoucherOrder).where(VoucherOrder.voucher_id == voucher_id).order_by(VoucherOrder.id)
            ).all()
            return [VoucherOrderModel.model_validate(row) for row in rows]
