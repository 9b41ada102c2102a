"""
Flash-sale admission pipeline.

Admission runs entirely in Valkey: one Lua script checks the remaining stock
and whether the user already holds an order, then reserves a unit and records
the user. Admitted requests get an order id immediately and their order task
is queued in memory; a single background worker persists the tasks one at a
time under a per-user distributed lock.
"""

import logging
import queue
import threading
from datetime import datetime
from typing import Callable, Optional

from ..cache.manager import CacheManager
from ..cache.utils import CacheKeyPrefix, TTLPreset
from ..database.config import DatabaseConfig
from ..database.repository import SeckillVoucherRepository, VoucherOrderRepository
from ..models.enums import SeckillStatus
from ..models.voucher import SeckillResultModel, SeckillVoucherModel, VoucherOrderModel
from .cache_client import CacheClient
from .id_worker import RedisIdWorker
from .lock_manager import DistributedLockManager

logger = logging.getLogger(__name__)

_STOP = object()


class OrderQueueFullError(Exception):
    """Raised when an admitted order cannot be queued for persistence."""
    pass


class VoucherOrderService:
    """
    Flash-sale ordering for seckill vouchers.

    Features:
    - Atomic stock reservation and one-order-per-user check in one script
    - Bounded in-memory queue between admission and persistence
    - Single background worker with per-user locking and an idempotence re-check
    """

    # KEYS[1] stock counter, KEYS[2] set of admitted users
    # ARGV[1] voucher id, ARGV[2] user id
    SECKILL_SCRIPT = """
local stockKey = KEYS[1]
local orderKey = KEYS[2]
local userId = ARGV[2]

if tonumber(redis.call('get', stockKey) or '0') <= 0 then
    return 1
end
if redis.call('sismember', orderKey, userId) == 1 then
    return 2
end
redis.call('incrby', stockKey, -1)
redis.call('sadd', orderKey, userId)
return 0
"""

    def __init__(
        self,
        cache_manager: CacheManager,
        lock_manager: DistributedLockManager,
        id_worker: RedisIdWorker,
        cache_client: CacheClient,
        db_config: DatabaseConfig,
        queue_capacity: int = 50000,
        order_lock_ttl: int = 10,
        voucher_cache_ttl: int = int(TTLPreset.SECKILL_VOUCHER),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            cache_manager: Command wrapper for the shared cache
            lock_manager: Lock manager for the per-user order locks
            id_worker: Source of order ids
            cache_client: Read-through cache for voucher records
            db_config: Database the worker persists orders to
            queue_capacity: Maximum pending order tasks
            order_lock_ttl: TTL of the per-user order lock in seconds
            voucher_cache_ttl: TTL of cached voucher records in seconds
            clock: Returns the current time for sale-window checks
        """
        self.cache = cache_manager
        self.lock_manager = lock_manager
        self.id_worker = id_worker
        self.cache_client = cache_client
        self.db = db_config
        self.voucher_repository = SeckillVoucherRepository(db_config)
        self.order_repository = VoucherOrderRepository(db_config)
        self.order_lock_ttl = order_lock_ttl
        self.voucher_cache_ttl = voucher_cache_ttl
        self._clock = clock or datetime.now

        self._queue: "queue.Queue" = queue.Queue(maxsize=queue_capacity)
        self._worker: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Request path
    # ------------------------------------------------------------------

    def register_seckill_voucher(self, voucher: SeckillVoucherModel) -> None:
        """Store a voucher and seed its admission state in the cache."""
        self.voucher_repository.insert(voucher)

        keys = self.cache.keys
        self.cache.set(keys.seckill_stock_key(voucher.voucher_id), str(voucher.stock))
        self.cache.delete(keys.seckill_order_key(voucher.voucher_id))
        self.cache_client.set(keys.seckill_voucher_key(voucher.voucher_id), voucher, self.voucher_cache_ttl)

        logger.info(f"Registered seckill voucher {voucher.voucher_id} with stock {voucher.stock}")

    def seckill_voucher(self, voucher_id: int, user_id: int) -> SeckillResultModel:
        """
        Try to buy one unit of a flash-sale voucher.

        Returns:
            SeckillResultModel with the order id on success, or the rejection reason

        Raises:
            OrderQueueFullError: If the admitted order could not be queued
            ValkeyError: If the cache is unavailable
        """
        voucher = self.cache_client.query_with_pass_through(
            CacheKeyPrefix.SECKILL_VOUCHER,
            voucher_id,
            self.voucher_repository.get_by_id,
            self.voucher_cache_ttl,
            SeckillVoucherModel,
        )
        if voucher is None:
            return SeckillResultModel.of(SeckillStatus.VOUCHER_NOT_FOUND)

        now = self._clock()
        if voucher.begin_time > now:
            return SeckillResultModel.of(SeckillStatus.NOT_STARTED)
        if voucher.end_time < now:
            return SeckillResultModel.of(SeckillStatus.ENDED)

        keys = self.cache.keys
        code = self.cache.eval(
            self.SECKILL_SCRIPT,
            [keys.seckill_stock_key(voucher_id), keys.seckill_order_key(voucher_id)],
            [voucher_id, user_id],
        )
        status = SeckillStatus(int(code))
        if status is not SeckillStatus.SUCCESS:
            logger.debug(f"Seckill rejected for user {user_id} on voucher {voucher_id}: {status.name}")
            return SeckillResultModel.of(status)

        order_id = self.id_worker.next_id("order")
        task = VoucherOrderModel(id=order_id, user_id=user_id, voucher_id=voucher_id, create_time=now)
        try:
            self._queue.put_nowait(task)
        except queue.Full:
            logger.error(f"Order queue full, dropping admitted order {order_id}")
            raise OrderQueueFullError(f"Order queue is full ({self._queue.maxsize} pending)") from None

        return SeckillResultModel.of(SeckillStatus.SUCCESS, order_id)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    @property
    def pending_orders(self) -> int:
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        """Start the background order worker."""
        if self.is_running:
            return
        self._worker = threading.Thread(target=self._run, name="voucher-order-worker", daemon=True)
        self._worker.start()
        logger.info("Voucher order worker started")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the worker after it has processed everything queued so far."""
        if not self.is_running:
            return
        self._queue.put(_STOP)
        self._worker.join(timeout)
        if self._worker.is_alive():
            logger.warning(f"Voucher order worker still running after {timeout}s")
            return
        self._worker = None
        logger.info("Voucher order worker stopped")

    def wait_until_drained(self) -> None:
        """Block until every queued task has been processed."""
        self._queue.join()

    def _run(self) -> None:
        while True:
            task = self._queue.get()
            try:
                if task is _STOP:
                    return
                self.handle_voucher_order(task)
            except Exception:
                logger.exception(f"Failed to persist voucher order {getattr(task, 'id', task)}")
            finally:
                self._queue.task_done()

    def handle_voucher_order(self, task: VoucherOrderModel) -> bool:
        """
        Persist one order task under the per-user lock.

        Returns:
            True if the order was written
        """
        lock_key = self.cache.keys.order_lock_key(task.user_id)
        token = self.lock_manager.owner_token()
        if not self.lock_manager.try_acquire(lock_key, self.order_lock_ttl, token):
            logger.warning(f"Order {task.id} skipped: user {task.user_id} already has an order in progress")
            return False

        try:
            return self.create_voucher_order(task)
        finally:
            self.lock_manager.release(lock_key, token)

    def create_voucher_order(self, task: VoucherOrderModel) -> bool:
        """Decrement durable stock and insert the order in one transaction."""
        with self.db.get_session_context() as session:
            if self.order_repository.count_by_user_and_voucher(task.user_id, task.voucher_id, session) > 0:
                logger.warning(f"Order {task.id} skipped: user {task.user_id} already ordered voucher {task.voucher_id}")
                return False

            if not self.voucher_repository.decrement_stock(task.voucher_id, session):
                logger.warning(f"Order {task.id} skipped: voucher {task.voucher_id} out of stock in the store")
                return False

            self.order_repository.insert(task, session)

        logger.info(f"Persisted voucher order {task.id} for user {task.user_id}")
        return True
