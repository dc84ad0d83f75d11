"""
Tests for Transfer movements.

A transfer moves FIFO layers between locations at their original receipt
date and unit cost.  Both balances move at the FIFO average cost of the
layers transferred, whatever cost the caller supplied.
"""

from datetime import date
from decimal import Decimal

import pytest

from coldstore_kernel.domain.movements import TransactionType
from coldstore_kernel.domain.stock_key import StockKey
from coldstore_kernel.exceptions import InsufficientStockError, InvalidTransactionError

RECEIPT = TransactionType.RECEIPT
ISSUE = TransactionType.ISSUE
TRANSFER = TransactionType.TRANSFER


def q(value, places="0.0001"):
    return Decimal(value).quantize(Decimal(places))


@pytest.fixture
def three_layers(processor, make_request):
    """10@5, 10@6, 10@7 received on consecutive days in WH-1."""
    for day, cost in ((1, 5), (2, 6), (3, 7)):
        processor.process(
            make_request(
                RECEIPT,
                10,
                unit_cost=cost,
                transaction_date=date(2025, 1, day),
                reference_number=f"GRN-{day}",
            )
        )


@pytest.fixture
def transfer(make_request):
    def _make(quantity, from_wh="WH-1", to_wh="WH-2", **kwargs):
        kwargs.setdefault("unit_cost", 99)
        return make_request(TRANSFER, quantity, from_warehouse_id=from_wh, to_warehouse_id=to_wh, **kwargs)

    return _make


@pytest.fixture
def wh2(stock_key) -> StockKey:
    return stock_key.relocated("WH-2", None)


class TestTransferCost:

    def test_record_uses_fifo_cost(self, three_layers, processor, transfer):
        record = processor.process(transfer(15))

        assert record.total_cost == Decimal("80")
        assert q(record.unit_cost) == Decimal("5.3333")
        assert [(e.quantity_used, e.unit_cost) for e in record.cost_breakdown] == [
            (Decimal("10"), Decimal("5")),
            (Decimal("5"), Decimal("6")),
        ]

    def test_record_locations(self, three_layers, processor, transfer):
        record = processor.process(transfer(15))

        assert record.transaction_number == "TRF-2025-0001"
        assert record.warehouse_id == "WH-1"
        assert record.from_warehouse_id == "WH-1"
        assert record.to_warehouse_id == "WH-2"

    def test_balances_move_at_fifo_average(self, three_layers, processor, transfer, stock_key, wh2):
        processor.process(transfer(15))

        source = processor.ledger.get(stock_key)
        destination = processor.ledger.get(wh2)
        assert source.quantity_on_hand == Decimal("15")
        assert destination.quantity_on_hand == Decimal("15")
        assert q(destination.weighted_average_cost) == Decimal("5.3333")
        assert q(destination.total_value, "0.01") == Decimal("80.00")
        assert destination.last_movement_type == TRANSFER


class TestTransferLayers:

    def test_destination_layers_keep_receipt_date_and_cost(self, three_layers, processor, transfer, wh2):
        processor.process(transfer(15))

        landed = processor.store.active_layers(wh2)
        assert [(l.receipt_date, l.remaining_quantity, l.unit_cost) for l in landed] == [
            (date(2025, 1, 1), Decimal("10"), Decimal("5")),
            (date(2025, 1, 2), Decimal("5"), Decimal("6")),
        ]

    def test_destination_layers_keep_receipt_reference(self, three_layers, processor, transfer, stock_key, wh2):
        processor.process(transfer(15))

        source_refs = {
            l.receipt_date: (l.receipt_reference, l.receipt_transaction_id)
            for l in processor.store.all_layers(stock_key.item_id)
            if l.stock_key == stock_key
        }
        for layer in processor.store.active_layers(wh2):
            assert (layer.receipt_reference, layer.receipt_transaction_id) == source_refs[layer.receipt_date]

    def test_source_layers_consumed_oldest_first(self, three_layers, processor, transfer, stock_key):
        processor.process(transfer(15))

        remaining = processor.store.active_layers(stock_key)
        assert [(l.remaining_quantity, l.unit_cost) for l in remaining] == [
            (Decimal("5"), Decimal("6")),
            (Decimal("10"), Decimal("7")),
        ]

    def test_issue_at_destination_uses_original_age(self, three_layers, processor, transfer, make_request):
        processor.process(transfer(15))

        record = processor.process(make_request(ISSUE, 12, warehouse_id="WH-2"))

        assert record.total_cost == Decimal("62")
        assert record.cost_breakdown[0].receipt_date == date(2025, 1, 1)

    def test_second_transfer_merges_into_destination_layer(self, three_layers, processor, transfer, wh2):
        processor.process(transfer(4))
        processor.process(transfer(3))

        landed = processor.store.active_layers(wh2)
        assert len(landed) == 1
        assert landed[0].remaining_quantity == Decimal("7")
        assert landed[0].original_quantity == Decimal("7")

    def test_transfer_back_reactivates_consumed_layer(self, three_layers, processor, transfer, stock_key):
        processor.process(transfer(15))
        processor.process(transfer(5, from_wh="WH-2", to_wh="WH-1"))

        back = processor.store.active_layers(stock_key)
        assert [(l.receipt_date, l.remaining_quantity) for l in back] == [
            (date(2025, 1, 1), Decimal("5")),
            (date(2025, 1, 2), Decimal("5")),
            (date(2025, 1, 3), Decimal("10")),
        ]
        wh1_layers = [l for l in processor.store.all_layers(stock_key.item_id) if l.stock_key == stock_key]
        assert len(wh1_layers) == 3

    def test_layers_and_balances_agree(self, three_layers, processor, transfer, stock_key, wh2):
        processor.process(transfer(15))

        for key in (stock_key, wh2):
            layer_total = sum(l.remaining_quantity for l in processor.store.active_layers(key))
            assert processor.ledger.get(key).quantity_on_hand == layer_total


class TestTransferLocations:

    def test_room_to_room_in_same_warehouse(self, processor, make_request, stock_key):
        processor.process(make_request(RECEIPT, 10, unit_cost=3, room_id="R1"))

        processor.process(
            make_request(
                TRANSFER,
                4,
                unit_cost=3,
                from_warehouse_id="WH-1",
                from_room_id="R1",
                to_warehouse_id="WH-1",
                to_room_id="R2",
            )
        )

        r1 = StockKey(item_id=stock_key.item_id, warehouse_id="WH-1", room_id="R1")
        r2 = StockKey(item_id=stock_key.item_id, warehouse_id="WH-1", room_id="R2")
        assert processor.ledger.get(r1).quantity_on_hand == Decimal("6")
        assert processor.ledger.get(r2).quantity_on_hand == Decimal("4")

    def test_lot_number_travels_with_stock(self, processor, make_request, transfer, stock_key):
        processor.process(make_request(RECEIPT, 10, unit_cost=3, lot_number="LOT-A"))

        processor.process(transfer(6, lot_number="LOT-A"))

        lot_at_wh2 = StockKey(item_id=stock_key.item_id, warehouse_id="WH-2", lot_number="LOT-A")
        assert processor.ledger.get(lot_at_wh2).quantity_on_hand == Decimal("6")

    def test_insufficient_stock_moves_nothing(self, three_layers, processor, transfer, stock_key, wh2):
        with pytest.raises(InsufficientStockError) as exc_info:
            processor.process(transfer(31))

        assert exc_info.value.available == Decimal("30")
        assert processor.ledger.get(stock_key).quantity_on_hand == Decimal("30")
        assert processor.ledger.get(wh2).quantity_on_hand == Decimal("0")
        assert processor.store.active_layers(wh2) == []

    def test_transfer_logs_replaced_cost(self, three_layers, processor, transfer, captured_logs):
        processor.process(transfer(5, unit_cost=1))

        replaced = [r for r in captured_logs() if r["message"] == "transfer_cost_replaced"]
        assert len(replaced) == 1
        assert replaced[0]["requested_unit_cost"] == "1"


class TestSameLocationRejected:
    """Locations are compared as stock keys, after whitespace is stripped."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"to_wh": "WH-1 "},
            {"to_wh": " WH-1"},
            {"to_wh": "WH-1", "from_room_id": " ", "to_room_id": None},
            {"to_wh": "WH-1", "from_room_id": None, "to_room_id": "  "},
            {"to_wh": "WH-1", "from_room_id": "R1", "to_room_id": " R1 "},
        ],
    )
    def test_padded_or_blank_location(self, three_layers, processor, transfer, kwargs):
        with pytest.raises(InvalidTransactionError) as exc_info:
            processor.process(transfer(4, **kwargs))

        assert exc_info.value.reason == "Source and destination locations cannot be the same"
        assert exc_info.value.field == "to_warehouse_id"

    def test_nothing_moves_and_rejection_logged(self, three_layers, processor, transfer, stock_key, captured_logs):
        with pytest.raises(InvalidTransactionError):
            processor.process(transfer(4, to_wh="WH-1 "))

        assert processor.ledger.get(stock_key).quantity_on_hand == Decimal("30")
        assert sum(l.remaining_quantity for l in processor.store.active_layers(stock_key)) == Decimal("30")
        rejected = [r for r in captured_logs() if r["message"] == "movement_rejected"]
        assert rejected[-1]["error_code"] == "INVALID_TRANSACTION"
