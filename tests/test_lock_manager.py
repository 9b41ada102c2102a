"""
Tests for the distributed lock.
"""

import threading

import pytest

from reviewhub.services.lock_manager import DistributedLockManager


LOCK_KEY = "lock:shop:1"


class TestAcquireRelease:
    """Basic lock semantics."""

    def test_second_acquire_is_busy(self, lock_manager):
        """A held lock reports busy instead of blocking."""
        assert lock_manager.try_acquire(LOCK_KEY, 10) is True
        assert lock_manager.try_acquire(LOCK_KEY, 10) is False

    def test_release_by_owner(self, lock_manager, valkey_client):
        lock_manager.try_acquire(LOCK_KEY, 10)
        assert lock_manager.release(LOCK_KEY) is True
        assert valkey_client.get(LOCK_KEY) is None
        assert lock_manager.try_acquire(LOCK_KEY, 10) is True

    def test_release_with_wrong_token_is_noop(self, lock_manager, valkey_client):
        lock_manager.try_acquire(LOCK_KEY, 10, token="owner-1")
        assert lock_manager.release(LOCK_KEY, token="intruder-2") is False
        assert valkey_client.get(LOCK_KEY) == "owner-1"

    def test_lock_carries_ttl(self, lock_manager, valkey_client):
        lock_manager.try_acquire(LOCK_KEY, 10)
        assert 0 < valkey_client.ttl(LOCK_KEY) <= 10

    def test_non_positive_ttl_rejected(self, lock_manager):
        with pytest.raises(ValueError):
            lock_manager.try_acquire(LOCK_KEY, 0)

    def test_token_identifies_process_and_thread(self, lock_manager):
        tokens = []
        worker = threading.Thread(target=lambda: tokens.append(lock_manager.owner_token()))
        worker.start()
        worker.join()

        assert lock_manager.owner_token().startswith(lock_manager.instance_id + "-")
        assert tokens[0].startswith(lock_manager.instance_id + "-")
        assert tokens[0] != lock_manager.owner_token()


class TestExpiredHolder:
    """A holder whose lock expired must not release the next owner's lock."""

    def test_stale_holder_cannot_release_new_owner(self, cache_manager, valkey_client):
        process_a = DistributedLockManager(cache_manager, instance_id="process-a")
        process_b = DistributedLockManager(cache_manager, instance_id="process-b")

        assert process_a.try_acquire(LOCK_KEY, 10) is True
        valkey_client.force_expire(LOCK_KEY)
        assert process_b.try_acquire(LOCK_KEY, 10) is True

        assert process_a.release(LOCK_KEY) is False
        status = process_b.get_lock_status(LOCK_KEY)
        assert status["owner_id"] == "process-b"
        assert status["is_owned_by_us"] is True

    def test_only_one_thread_wins(self, lock_manager):
        """Concurrent attempts on a free lock admit exactly one thread."""
        barrier = threading.Barrier(20)
        results = []

        def attempt():
            barrier.wait()
            results.append(lock_manager.try_acquire(LOCK_KEY, 10))

        threads = [threading.Thread(target=attempt) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1


class TestLockContext:
    """Context manager usage."""

    def test_context_acquires_and_releases(self, lock_manager, valkey_client):
        with lock_manager.lock_context(LOCK_KEY, 10) as lock:
            assert lock is not None
            assert lock.lock_key == LOCK_KEY
            assert valkey_client.get(LOCK_KEY) == lock.owner_token
        assert valkey_client.get(LOCK_KEY) is None

    def test_context_yields_none_when_busy(self, lock_manager, valkey_client):
        lock_manager.try_acquire(LOCK_KEY, 10, token="someone-else")
        with lock_manager.lock_context(LOCK_KEY, 10) as lock:
            assert lock is None
        assert valkey_client.get(LOCK_KEY) == "someone-else"

    def test_context_releases_on_error(self, lock_manager, valkey_client):
        with pytest.raises(RuntimeError):
            with lock_manager.lock_context(LOCK_KEY, 10):
                raise RuntimeError("boom")
        assert valkey_client.get(LOCK_KEY) is None

    def test_status_of_missing_lock(self, lock_manager):
        assert lock_manager.get_lock_status(LOCK_KEY) is None
