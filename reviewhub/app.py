"""
Process-scoped wiring of the reviewhub core.

ReviewHubApp constructs the cache client, database, services and the
order worker in dependency order and tears them down in reverse.
"""

import logging
from typing import Optional

from .cache.client import ValkeyClient
from .cache.config import ValkeyConfig
from .cache.manager import CacheManager
from .database.config import DatabaseConfig
from .services.cache_client import CacheClient
from .services.id_worker import RedisIdWorker
from .services.lock_manager import DistributedLockManager
from .services.shop_service import ShopService
from .services.voucher_order_service import VoucherOrderService
from .utils.config import AppConfig, get_config

logger = logging.getLogger(__name__)


class ReviewHubApp:
    """
    Lifecycle container for the backend core.

    Usage:
        with ReviewHubApp() as app:
            app.voucher_orders.seckill_voucher(voucher_id, user_id)
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        valkey_client: Optional[ValkeyClient] = None,
        db_config: Optional[DatabaseConfig] = None,
    ):
        """
        Args:
            config: Application tunables; the process-wide get_config() if omitted
            valkey_client: Cache connection, built from VALKEY_* variables if omitted
            db_config: Database, built from DATABASE_URL / DB_* variables if omitted
        """
        self.config = config or get_config()
        self.valkey_client = valkey_client or ValkeyClient(ValkeyConfig.from_env())
        self.db_config = db_config or DatabaseConfig(self.config.database_url)

        self.cache_manager = CacheManager(
            self.valkey_client,
            circuit_breaker_threshold=self.config.circuit_breaker_threshold,
            circuit_breaker_timeout=self.config.circuit_breaker_timeout,
        )
        self.lock_manager = DistributedLockManager(self.cache_manager)
        self.id_worker = RedisIdWorker(self.cache_manager)
        self.cache_client = CacheClient(
            self.cache_manager,
            self.lock_manager,
            null_ttl=self.config.cache_null_ttl,
            lock_ttl=self.config.cache_lock_ttl,
            retry_delay=self.config.cache_retry_delay,
            max_retries=self.config.cache_max_retries,
            rebuild_pool_size=self.config.cache_rebuild_pool_size,
            jitter=self.config.cache_ttl_jitter,
        )
        self.shops = ShopService(self.cache_client, self.db_config, shop_ttl=self.config.cache_shop_ttl)
        self.voucher_orders = VoucherOrderService(
            self.cache_manager,
            self.lock_manager,
            self.id_worker,
            self.cache_client,
            self.db_config,
            queue_capacity=self.config.order_queue_capacity,
            order_lock_ttl=self.config.order_lock_ttl,
        )
        self._started = False

    def start(self) -> "ReviewHubApp":
        """Connect to the cache and database and start the order worker."""
        if self._started:
            return self

        self.valkey_client.connect()
        self.db_config.initialize()
        self.db_config.create_tables()
        self.voucher_orders.start()
        self._started = True
        logger.info("ReviewHubApp started")
        return self

    def close(self, timeout: Optional[float] = 30.0) -> None:
        """Drain the order worker, stop the rebuild pool and disconnect."""
        self.voucher_orders.stop(timeout)
        self.cache_client.close()
        self.cache_manager.close()
        self.db_config.close()
        self._started = False
        logger.info("ReviewHubApp closed")

    def __enter__(self) -> "ReviewHubApp":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
