"""
Cache configuration and key utility tests.

Tests the Valkey configuration, key naming and TTL helpers without
requiring a running Valkey instance.
"""

import threading
import time
import pytest
from unittest.mock import patch, MagicMock
from datetime import datetime

from reviewhub.cache import (
    ValkeyConfig,
    ValkeyClient,
    ValkeyConfigurationError,
    ValkeyConnectionError,
    CacheKeyPrefix,
    TTLPreset,
    CacheKeyBuilder,
    TTLCalculator,
    key_manager
)


class TestValkeyConfig:
    """Test Valkey configuration functionality."""

    def test_config_creation_with_defaults(self):
        """Test creating config with default values."""
        config = ValkeyConfig()
        assert config.host == "localhost"
        assert config.port == 6379
        assert config.database == 0
        assert config.max_connections == 50
        assert config.decode_responses is True

    def test_config_from_env(self):
        """Test creating config from environment variables."""
        with patch.dict('os.environ', {
            'VALKEY_HOST': 'cache-host',
            'VALKEY_PORT': '6380',
            'VALKEY_PASSWORD': 'test-pass',
            'VALKEY_DATABASE': '3',
            'VALKEY_MAX_CONNECTIONS': '20'
        }):
            config = ValkeyConfig.from_env()
            assert config.host == "cache-host"
            assert config.port == 6380
            assert config.password == "test-pass"
            assert config.database == 3
            assert config.max_connections == 20

    def test_pool_kwargs_include_max_connections(self):
        """Only pool kwargs carry max_connections; the password is passed through."""
        config = ValkeyConfig(password="pw", max_connections=15)
        assert "max_connections" not in config.to_connection_kwargs()
        kwargs = config.to_connection_pool_kwargs()
        assert kwargs["max_connections"] == 15
        assert kwargs["password"] == "pw"

    def test_config_string_representation(self):
        """Test config string representation hides password."""
        config = ValkeyConfig(password="secret123")
        config_str = str(config)
        assert "secret123" not in config_str
        assert "***" in config_str

    @pytest.mark.parametrize("kwargs", [{"port": 0}, {"max_connections": 0}, {"connect_attempts": 0}])
    def test_invalid_settings_rejected(self, kwargs):
        with pytest.raises(ValkeyConfigurationError):
            ValkeyConfig(**kwargs)

    def test_backoff_doubles_up_to_cap(self):
        config = ValkeyConfig(backoff_initial=1.0, backoff_max=5.0)
        assert [config.backoff_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


class TestCacheKeys:
    """Test key naming conventions."""

    def test_build_key_skips_none_parts(self):
        assert CacheKeyBuilder.build_key(CacheKeyPrefix.SHOP, 1) == "cache:shop:1"
        assert CacheKeyBuilder.build_key(CacheKeyPrefix.SHOP_TYPE, None) == "cache:shop-type"

    def test_build_key_sorts_params(self):
        key = CacheKeyBuilder.build_key("search", "x", b=2, a=1)
        assert key == "search:x:a=1:b=2"

    def test_named_keys(self):
        """Every key the services write has a fixed layout."""
        assert key_manager.shop_key(7) == "cache:shop:7"
        assert key_manager.shop_lock_key(7) == "lock:shop:7"
        assert key_manager.seckill_stock_key(9) == "seckill:stock:9"
        assert key_manager.seckill_order_key(9) == "seckill:order:9"
        assert key_manager.seckill_voucher_key(9) == "cache:seckill-voucher:9"
        assert key_manager.order_lock_key(42) == "lock:order:42"

    def test_id_counter_key_uses_day(self):
        day = datetime(2024, 1, 15, 23, 59)
        assert key_manager.id_counter_key("order", day) == "icr:order:2024:01:15"


class TestTTLCalculator:
    """Test TTL jitter."""

    def test_jitter_stays_within_ten_percent(self):
        for _ in range(200):
            ttl = TTLCalculator.calculate_ttl_with_jitter(TTLPreset.SHOP)
            assert 1620 <= ttl <= 1980

    def test_short_ttl_is_not_stretched(self):
        """A TTL below the minimum is never raised above its base value."""
        for _ in range(50):
            assert TTLCalculator.calculate_ttl_with_jitter(10) <= 11

    @pytest.mark.parametrize("base", [0, 1])
    def test_zero_jitter_range(self, base):
        assert TTLCalculator.calculate_ttl_with_jitter(base) == base


class TestValkeyClient:
    """Connection handling with the valkey library mocked out."""

    def _config(self, attempts=3):
        return ValkeyConfig(connect_attempts=attempts, backoff_initial=0.01, backoff_max=0.01)

    @patch('reviewhub.cache.client.ConnectionPool')
    @patch('reviewhub.cache.client.valkey.Valkey')
    def test_connect_retries_then_succeeds(self, mock_valkey, mock_pool):
        raw = MagicMock()
        raw.ping.side_effect = [ConnectionRefusedError("refused"), True]
        mock_valkey.return_value = raw

        client = ValkeyClient(self._config())
        client.connect()

        assert client.is_connected
        assert client.client is raw
        assert raw.ping.call_count == 2

    @patch('reviewhub.cache.client.ConnectionPool')
    @patch('reviewhub.cache.client.valkey.Valkey')
    def test_connect_gives_up(self, mock_valkey, mock_pool):
        mock_valkey.return_value.ping.side_effect = ConnectionRefusedError("refused")

        client = ValkeyClient(self._config(attempts=2))
        with pytest.raises(ValkeyConnectionError):
            client.connect()

        assert not client.is_connected
        assert client.get_connection_info()["failed_attempts"] == 2

    def test_client_requires_connect(self):
        with pytest.raises(ValkeyConnectionError):
            ValkeyClient(self._config()).client

    @patch('reviewhub.cache.client.ConnectionPool')
    @patch('reviewhub.cache.client.valkey.Valkey')
    def test_failed_health_check_marks_unhealthy(self, mock_valkey, mock_pool):
        raw = mock_valkey.return_value
        raw.ping.return_value = True
        client = ValkeyClient(self._config())
        client.connect()

        raw.ping.side_effect = TimeoutError("slow")
        assert client.health_check(force=True) is False
        assert not client.is_connected

    @patch('reviewhub.cache.client.ConnectionPool')
    @patch('reviewhub.cache.client.valkey.Valkey')
    def test_concurrent_callers_fail_fast_during_outage(self, mock_valkey, mock_pool):
        """Only one caller runs the backoff; the rest fail without waiting for it."""
        mock_valkey.return_value.ping.side_effect = ConnectionRefusedError("refused")
        client = ValkeyClient(ValkeyConfig(connect_attempts=3, backoff_initial=0.2, backoff_max=1.0))
        callers = 6
        barrier = threading.Barrier(callers)
        durations = []
        errors = []

        def call():
            barrier.wait()
            start = time.monotonic()
            try:
                client.ensure_connection()
            except ValkeyConnectionError as e:
                errors.append(e)
            durations.append(time.monotonic() - start)

        threads = [threading.Thread(target=call) for _ in range(callers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)

        assert len(errors) == callers
        durations.sort()
        assert durations[-1] >= 0.5
        assert all(d < 0.3 for d in durations[:-1])

    @patch('reviewhub.cache.client.ConnectionPool')
    @patch('reviewhub.cache.client.valkey.Valkey')
    def test_failed_cycle_starts_cooldown(self, mock_valkey, mock_pool):
        raw = mock_valkey.return_value
        raw.ping.side_effect = ConnectionRefusedError("refused")
        client = ValkeyClient(self._config(attempts=2))
        with pytest.raises(ValkeyConnectionError):
            client.connect()
        pings = raw.ping.call_count

        with pytest.raises(ValkeyConnectionError, match="last reconnect failed"):
            client.connect()
        assert raw.ping.call_count == pings

    @patch('reviewhub.cache.client.ConnectionPool')
    @patch('reviewhub.cache.client.valkey.Valkey')
    def test_reconnect_closes_previous_pool(self, mock_valkey, mock_pool):
        first_pool, second_pool = MagicMock(), MagicMock()
        mock_pool.side_effect = [first_pool, second_pool]
        mock_valkey.return_value.ping.side_effect = [True, TimeoutError("slow"), True]
        client = ValkeyClient(self._config())
        client.connect()

        assert client.health_check(force=True) is False
        client.ensure_connection()

        first_pool.disconnect.assert_called_once()
        second_pool.disconnect.assert_not_called()
        assert client.is_connected
