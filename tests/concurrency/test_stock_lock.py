"""
Tests for the in-process stock key lock map.
"""

import threading
from dataclasses import replace

import pytest

from coldstore_kernel.domain.movements import TransactionType
from coldstore_kernel.domain.stock_key import StockKey
from coldstore_kernel.exceptions import StockLockTimeoutError
from coldstore_kernel.services.stock_lock import StockLockManager
from coldstore_services import transaction_processor
from coldstore_services.transaction_processor import TransactionProcessor, default_lock_manager

K1 = StockKey(item_id="ITEM-1", warehouse_id="WH-1")
K2 = StockKey(item_id="ITEM-1", warehouse_id="WH-2")


def hold_in_thread(locks, keys, started, release):
    """Hold ``keys`` on a background thread until ``release`` is set."""

    def run():
        with locks.hold(keys):
            started.set()
            release.wait(timeout=10)

    thread = threading.Thread(target=run)
    thread.start()
    assert started.wait(timeout=5)
    return thread


class TestStockLockManager:

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValueError):
            StockLockManager(0)

    def test_entries_dropped_after_release(self):
        locks = StockLockManager(1.0)

        with locks.hold([K1, K2]):
            assert locks.active_keys() == 2

        assert locks.active_keys() == 0

    def test_reentrant_in_same_thread(self):
        locks = StockLockManager(1.0)

        with locks.hold([K1]):
            with locks.hold([K1, K2]):
                assert locks.active_keys() == 2

        assert locks.active_keys() == 0

    def test_duplicate_keys_collapsed(self):
        locks = StockLockManager(1.0)

        with locks.hold([K1, K1]):
            assert locks.active_keys() == 1

    def test_held_key_times_out_other_thread(self):
        locks = StockLockManager(1.0)
        started, release = threading.Event(), threading.Event()
        holder = hold_in_thread(locks, [K1], started, release)

        try:
            with pytest.raises(StockLockTimeoutError) as exc_info:
                with locks.hold([K1], timeout_seconds=0.05):
                    pass
            assert exc_info.value.retryable
        finally:
            release.set()
            holder.join(timeout=5)

        assert locks.active_keys() == 0

    def test_different_keys_do_not_contend(self):
        locks = StockLockManager(1.0)
        started, release = threading.Event(), threading.Event()
        holder = hold_in_thread(locks, [K1], started, release)

        try:
            with locks.hold([K2], timeout_seconds=0.05):
                assert locks.active_keys() == 2
        finally:
            release.set()
            holder.join(timeout=5)

    def test_partial_acquisition_released_on_timeout(self):
        locks = StockLockManager(1.0)
        started, release = threading.Event(), threading.Event()
        holder = hold_in_thread(locks, [K2], started, release)

        try:
            with pytest.raises(StockLockTimeoutError):
                with locks.hold([K1, K2], timeout_seconds=0.05):
                    pass
            # K1 was taken first and must have been given back.
            acquired = threading.Event()

            def take_k1():
                with locks.hold([K1], timeout_seconds=0.5):
                    acquired.set()

            other = threading.Thread(target=take_k1)
            other.start()
            other.join(timeout=5)
            assert acquired.is_set()
        finally:
            release.set()
            holder.join(timeout=5)

    @pytest.mark.slow_locks
    def test_opposite_order_requests_do_not_deadlock(self):
        locks = StockLockManager(5.0)
        errors = []

        def churn(keys):
            try:
                for _ in range(200):
                    with locks.hold(keys):
                        pass
            except StockLockTimeoutError as exc:
                errors.append(exc)

        threads = [
            threading.Thread(target=churn, args=([K1, K2],)),
            threading.Thread(target=churn, args=([K2, K1],)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert not any(t.is_alive() for t in threads)
        assert errors == []
        assert locks.active_keys() == 0


class TestSharedLockMap:
    """Processors built without ``locks`` share the process-wide map."""

    @pytest.fixture
    def fresh_default_map(self, monkeypatch):
        monkeypatch.setattr(transaction_processor, "_default_locks", None)
        return default_lock_manager(30.0)

    def test_later_processor_keeps_its_own_timeout(
        self, fresh_default_map, session, deterministic_clock, engine_settings, make_request, stock_key
    ):
        processor = TransactionProcessor(
            session,
            deterministic_clock,
            settings=replace(engine_settings, lock_timeout_seconds=0.05),
        )
        started, release = threading.Event(), threading.Event()
        holder = hold_in_thread(fresh_default_map, [stock_key], started, release)
        try:
            with pytest.raises(StockLockTimeoutError) as exc_info:
                processor.process(make_request(TransactionType.RECEIPT, 5, unit_cost=1))
        finally:
            release.set()
            holder.join(timeout=5)

        assert fresh_default_map.timeout_seconds == 30.0
        assert exc_info.value.timeout_seconds == 0.05
