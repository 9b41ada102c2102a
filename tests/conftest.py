"""
Shared fixtures for the reviewhub test suite.

The shared cache is replaced by an in-process, thread-safe MockValkeyClient
that implements the commands the services use, including the two Lua scripts.
The backing store is an in-memory SQLite database behind the real
DatabaseConfig.
"""

import math
import threading
import time

import pytest
from valkey.exceptions import ResponseError

from reviewhub.cache.manager import CacheManager
from reviewhub.database.config import DatabaseConfig
from reviewhub.services.cache_client import CacheClient
from reviewhub.services.id_worker import RedisIdWorker
from reviewhub.services.lock_manager import DistributedLockManager
from reviewhub.services.shop_service import ShopService
from reviewhub.services.voucher_order_service import VoucherOrderService


class MockValkeyClient:
    """Mock Valkey client for testing."""

    def __init__(self):
        self.data = {}
        self.sets = {}
        self.expiry = {}
        self.client = self
        self.is_connected = True
        self._lock = threading.RLock()

    # Connection management used by CacheManager

    def connect(self):
        self.is_connected = True

    def disconnect(self):
        self.is_connected = False

    def ensure_connection(self):
        self.is_connected = True

    def health_check(self, force=False):
        return self.is_connected

    def get_connection_info(self):
        return {"is_connected": self.is_connected, "config": "MockValkeyClient", "server_version": "mock"}

    def ping(self):
        return True

    # Expiry helpers

    def _purge(self, key):
        deadline = self.expiry.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            self.data.pop(key, None)
            self.sets.pop(key, None)
            self.expiry.pop(key, None)

    def _exists(self, key):
        self._purge(key)
        return key in self.data or key in self.sets

    def force_expire(self, key):
        """Drop a key as if its TTL had run out."""
        with self._lock:
            self.data.pop(key, None)
            self.sets.pop(key, None)
            self.expiry.pop(key, None)

    # String commands

    def get(self, key):
        """Mock GET operation."""
        with self._lock:
            self._purge(key)
            return self.data.get(key)

    def set(self, key, value, ex=None, px=None, nx=False):
        """Mock SET operation."""
        with self._lock:
            if nx and self._exists(key):
                return None
            self.data[key] = str(value)
            self.expiry.pop(key, None)
            if ex is not None:
                self.expiry[key] = time.monotonic() + ex
            elif px is not None:
                self.expiry[key] = time.monotonic() + px / 1000
            return True

    def setex(self, key, time_seconds, value):
        """Mock SETEX operation."""
        return self.set(key, value, ex=time_seconds)

    def delete(self, *keys):
        """Mock DELETE operation."""
        with self._lock:
            deleted = 0
            for key in keys:
                if self._exists(key):
                    deleted += 1
                self.data.pop(key, None)
                self.sets.pop(key, None)
                self.expiry.pop(key, None)
            return deleted

    def incr(self, key):
        """Mock INCR operation."""
        with self._lock:
            self._purge(key)
            value = int(self.data.get(key, "0")) + 1
            self.data[key] = str(value)
            return value

    def expire(self, key, seconds):
        with self._lock:
            if not self._exists(key):
                return False
            self.expiry[key] = time.monotonic() + seconds
            return True

    def ttl(self, key):
        with self._lock:
            if not self._exists(key):
                return -2
            deadline = self.expiry.get(key)
            if deadline is None:
                return -1
            return math.ceil(deadline - time.monotonic())

    # Set commands

    def sadd(self, key, *members):
        with self._lock:
            self._purge(key)
            members_set = self.sets.setdefault(key, set())
            before = len(members_set)
            members_set.update(str(m) for m in members)
            return len(members_set) - before

    def sismember(self, key, member):
        with self._lock:
            self._purge(key)
            return str(member) in self.sets.get(key, set())

    # Scripts

    def eval(self, script, num_keys, *args):
        """Mock EVAL operation dispatching on the known scripts."""
        keys, argv = args[:num_keys], [str(a) for a in args[num_keys:]]
        with self._lock:
            if script == DistributedLockManager.UNLOCK_SCRIPT:
                if self.get(keys[0]) == argv[0]:
                    return self.delete(keys[0])
                return 0

            if script == VoucherOrderService.SECKILL_SCRIPT:
                stock_key, order_key = keys
                if int(self.get(stock_key) or "0") <= 0:
                    return 1
                if self.sismember(order_key, argv[1]):
                    return 2
                self.data[stock_key] = str(int(self.data[stock_key]) - 1)
                self.sadd(order_key, argv[1])
                return 0

        raise ResponseError("NOSCRIPT unknown script")


@pytest.fixture
def valkey_client():
    """Create mock Valkey client for testing."""
    return MockValkeyClient()


@pytest.fixture
def cache_manager(valkey_client):
    """Create cache manager backed by the mock client."""
    return CacheManager(valkey_client)


@pytest.fixture
def lock_manager(cache_manager):
    return DistributedLockManager(cache_manager)


@pytest.fixture
def id_worker(cache_manager):
    return RedisIdWorker(cache_manager)


@pytest.fixture
def cache_client(cache_manager, lock_manager):
    """Cache client with short retry delays and deterministic TTLs."""
    client = CacheClient(
        cache_manager,
        lock_manager,
        null_ttl=120,
        lock_ttl=10,
        retry_delay=0.01,
        max_retries=200,
        rebuild_pool_size=10,
        jitter=False,
    )
    yield client
    client.close()


@pytest.fixture
def db_config():
    """In-memory SQLite database with all tables created."""
    config = DatabaseConfig("sqlite:///:memory:")
    config.initialize()
    config.create_tables()
    yield config
    config.close()


@pytest.fixture
def shop_service(cache_client, db_config):
    return ShopService(cache_client, db_config, shop_ttl=1800)


@pytest.fixture
def voucher_service(cache_manager, lock_manager, id_worker, cache_client, db_config):
    """Voucher order service with its worker running."""
    service = VoucherOrderService(
        cache_manager,
        lock_manager,
        id_worker,
        cache_client,
        db_config,
        queue_capacity=1000,
        order_lock_ttl=10,
    )
    service.start()
    yield service
    service.stop(timeout=5)
