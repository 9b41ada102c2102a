"""
End-to-end wiring test of the backend core.
"""

from datetime import datetime, timedelta

from reviewhub.app import ReviewHubApp
from reviewhub.database import DatabaseConfig
from reviewhub.models import CacheStrategy, SeckillStatus, SeckillVoucherModel, ShopModel
from reviewhub.utils.config import AppConfig


def make_app(valkey_client) -> ReviewHubApp:
    config = AppConfig(cache_retry_delay_ms=5, cache_ttl_jitter=False, order_queue_capacity=100)
    return ReviewHubApp(config, valkey_client, DatabaseConfig("sqlite:///:memory:"))


class TestReviewHubApp:
    """Start, serve and close."""

    def test_seckill_round_trip(self, valkey_client):
        with make_app(valkey_client) as app:
            now = datetime.now()
            app.voucher_orders.register_seckill_voucher(SeckillVoucherModel(
                voucher_id=7, stock=2,
                begin_time=now - timedelta(minutes=1), end_time=now + timedelta(hours=1),
            ))

            results = [app.voucher_orders.seckill_voucher(7, user_id) for user_id in (1, 2, 3)]
            app.voucher_orders.wait_until_drained()

            assert [r.status for r in results] == [
                SeckillStatus.SUCCESS, SeckillStatus.SUCCESS, SeckillStatus.INSUFFICIENT_STOCK,
            ]
            assert len(app.voucher_orders.order_repository.list_by_voucher(7)) == 2

        assert not app.voucher_orders.is_running

    def test_shop_lookup(self, valkey_client):
        with make_app(valkey_client) as app:
            app.shops.repository.insert(ShopModel(id=3, name="Dumplings", type_id=2, address="3 Lane", x=1.0, y=2.0))
            assert app.shops.query_by_id(3, CacheStrategy.MUTEX).name == "Dumplings"

    def test_start_is_idempotent(self, valkey_client):
        app = make_app(valkey_client)
        try:
            assert app.start() is app.start()
            assert app.voucher_orders.is_running
        finally:
            app.close(timeout=5)
