"""
Tests for BalanceLedger and for reservations through the processor.
"""

from datetime import date
from decimal import Decimal

import pytest

from coldstore_kernel.domain.movements import TransactionType
from coldstore_kernel.domain.stock_key import StockKey
from coldstore_kernel.exceptions import InsufficientStockError, StockReservationError

KEY = StockKey(item_id="ITEM-LEDGER", warehouse_id="WH-1", room_id="FREEZER-2")
D = date(2025, 1, 10)


def move(ledger, change, cost, movement_type=TransactionType.RECEIPT):
    return ledger.apply_movement(
        KEY,
        Decimal(str(change)),
        Decimal(str(cost)),
        movement_date=D,
        movement_type=movement_type,
    )


class TestBalanceReads:

    def test_unknown_key_is_empty(self, balance_ledger):
        balance = balance_ledger.get(KEY)

        assert balance.quantity_on_hand == Decimal("0")
        assert balance.weighted_average_cost == Decimal("0")
        assert balance.last_movement_type is None

    def test_availability(self, balance_ledger):
        move(balance_ledger, 10, 1)

        ok = balance_ledger.check_availability(KEY, Decimal("4"))
        short = balance_ledger.check_availability(KEY, Decimal("14"))

        assert ok.is_available
        assert not short.is_available
        assert short.shortfall == Decimal("4")

    def test_ensure_available_raises(self, balance_ledger, captured_logs):
        move(balance_ledger, 10, 1)

        with pytest.raises(InsufficientStockError) as exc_info:
            balance_ledger.ensure_available(KEY, Decimal("11"))

        assert exc_info.value.available == Decimal("10")
        assert any(r["message"] == "insufficient_stock" for r in captured_logs())


class TestApplyMovement:

    def test_first_movement_creates_row(self, balance_ledger):
        delta = move(balance_ledger, 100, 10)

        assert delta.before.on_hand == Decimal("0")
        assert delta.after.on_hand == Decimal("100")
        assert delta.value_change == Decimal("1000")
        balance = balance_ledger.get(KEY)
        assert balance.quantity_on_hand == Decimal("100")
        assert balance.last_movement_date == D
        assert balance.last_movement_type == TransactionType.RECEIPT

    def test_inflows_average_cost(self, balance_ledger):
        move(balance_ledger, 100, 10)
        move(balance_ledger, 50, 12)

        balance = balance_ledger.get(KEY)
        assert balance.quantity_on_hand == Decimal("150")
        assert balance.total_value.quantize(Decimal("0.01")) == Decimal("1600.00")
        assert balance.weighted_average_cost.quantize(Decimal("0.0001")) == Decimal("10.6667")

    def test_outflow_keeps_average(self, balance_ledger):
        move(balance_ledger, 10, 4)
        move(balance_ledger, -4, 9, TransactionType.ISSUE)

        balance = balance_ledger.get(KEY)
        assert balance.quantity_on_hand == Decimal("6")
        assert balance.weighted_average_cost == Decimal("4")
        assert balance.total_value == Decimal("24")
        assert balance.last_movement_type == TransactionType.ISSUE

    def test_cannot_go_negative(self, balance_ledger):
        move(balance_ledger, 5, 1)

        with pytest.raises(InsufficientStockError):
            move(balance_ledger, -6, 1, TransactionType.ISSUE)

        assert balance_ledger.get(KEY).quantity_on_hand == Decimal("5")

    def test_available_tracks_on_hand(self, balance_ledger):
        move(balance_ledger, 5, 1)
        balance_ledger.reserve(KEY, Decimal("2"))
        move(balance_ledger, 3, 1)

        balance = balance_ledger.get(KEY)
        assert balance.quantity_available == Decimal("6")
        assert balance.quantity_reserved == Decimal("2")


class TestLedgerReservations:

    def test_reserve_then_release(self, balance_ledger):
        move(balance_ledger, 10, 1)

        reserved = balance_ledger.reserve(KEY, Decimal("7"))
        assert reserved.quantity_available == Decimal("3")

        released = balance_ledger.release(KEY, Decimal("7"))
        assert released.quantity_available == Decimal("10")
        assert released.quantity_on_hand == Decimal("10")

    def test_over_reservation(self, balance_ledger):
        move(balance_ledger, 10, 1)

        with pytest.raises(StockReservationError):
            balance_ledger.reserve(KEY, Decimal("11"))

    def test_over_release(self, balance_ledger):
        move(balance_ledger, 10, 1)
        balance_ledger.reserve(KEY, Decimal("1"))

        with pytest.raises(StockReservationError):
            balance_ledger.release(KEY, Decimal("2"))


class TestProcessorReservations:

    def test_reserved_stock_cannot_be_issued(self, processor, make_request, stock_key):
        processor.process(make_request(TransactionType.RECEIPT, 100, unit_cost=1))
        processor.reserve_stock(stock_key, Decimal("30"))

        with pytest.raises(InsufficientStockError) as exc_info:
            processor.process(make_request(TransactionType.ISSUE, 80))

        assert exc_info.value.available == Decimal("70")

        processor.process(make_request(TransactionType.ISSUE, 70))
        balance = processor.release_reservation(stock_key, Decimal("30"))
        assert balance.quantity_on_hand == Decimal("30")
        assert balance.quantity_available == Decimal("30")

    def test_failed_reservation_rolls_back(self, processor, make_request, stock_key, lock_manager):
        processor.process(make_request(TransactionType.RECEIPT, 5, unit_cost=1))

        with pytest.raises(StockReservationError):
            processor.reserve_stock(stock_key, Decimal("6"))

        assert processor.ledger.get(stock_key).quantity_reserved == Decimal("0")
        assert lock_manager.active_keys() == 0
