"""
Tests for the pure integrity checks over layers and balances.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

from coldstore_engines.integrity import (
    IssueKind,
    build_report,
    check_balance,
    check_layer,
)
from coldstore_kernel.domain.dtos import BalanceInfo, CostLayerInfo
from coldstore_kernel.domain.stock_key import StockKey

KEY = StockKey(item_id="ITEM-1", warehouse_id="WH-1")
OTHER = StockKey(item_id="ITEM-1", warehouse_id="WH-2")


def layer(original, remaining, unit_cost="5", consumed=None, key=KEY):
    remaining = Decimal(str(remaining))
    return CostLayerInfo(
        id=uuid4(),
        stock_key=key,
        sequence=1,
        receipt_date=date(2025, 1, 1),
        original_quantity=Decimal(str(original)),
        remaining_quantity=remaining,
        unit_cost=Decimal(str(unit_cost)),
        is_fully_consumed=(remaining == 0) if consumed is None else consumed,
    )


def balance(on_hand, reserved="0", available=None, total_value=None, wac="5", key=KEY):
    on_hand = Decimal(str(on_hand))
    reserved = Decimal(str(reserved))
    return BalanceInfo(
        stock_key=key,
        quantity_on_hand=on_hand,
        quantity_reserved=reserved,
        quantity_available=on_hand - reserved if available is None else Decimal(str(available)),
        weighted_average_cost=Decimal(wac),
        total_value=on_hand * Decimal(wac) if total_value is None else Decimal(str(total_value)),
    )


def kinds(issues):
    return {issue.kind for issue in issues}


class TestLayerChecks:

    def test_healthy_layer(self):
        assert check_layer(layer(10, 4)) == []
        assert check_layer(layer(10, 0)) == []

    def test_negative_remaining(self):
        issues = check_layer(layer(10, -1, consumed=False))
        assert IssueKind.NEGATIVE_REMAINING in kinds(issues)

    def test_remaining_exceeds_original(self):
        issues = check_layer(layer(10, 12))
        assert kinds(issues) == {IssueKind.REMAINING_EXCEEDS_ORIGINAL}
        assert "exceeds original" in issues[0].message

    def test_consumed_flag_with_remaining(self):
        issues = check_layer(layer(10, 3, consumed=True))
        assert kinds(issues) == {IssueKind.CONSUMED_WITH_REMAINING}

    def test_empty_layer_not_flagged_consumed(self):
        issues = check_layer(layer(10, 0, consumed=False))
        assert kinds(issues) == {IssueKind.EMPTY_NOT_CONSUMED}

    def test_negative_unit_cost(self):
        issues = check_layer(layer(10, 5, unit_cost="-1"))
        assert kinds(issues) == {IssueKind.NEGATIVE_UNIT_COST}
        assert str(issues[0]).startswith("Layer ")


class TestBalanceChecks:

    def test_reconciled_balance(self):
        assert check_balance(balance(15), [layer(10, 10), layer(10, 5)]) == []

    def test_consumed_layers_excluded_from_total(self):
        assert check_balance(balance(5), [layer(10, 5), layer(10, 0)]) == []

    def test_on_hand_mismatch(self):
        issues = check_balance(balance(20), [layer(10, 10)])
        assert kinds(issues) == {IssueKind.BALANCE_LAYER_MISMATCH}

    def test_available_mismatch(self):
        issues = check_balance(balance(10, reserved="2", available="10"), [layer(10, 10)])
        assert kinds(issues) == {IssueKind.AVAILABLE_MISMATCH}

    def test_reserved_exceeds_on_hand(self):
        issues = check_balance(balance(10, reserved="12"), [layer(10, 10)])
        assert IssueKind.RESERVED_EXCEEDS_ON_HAND in kinds(issues)


class TestBuildReport:

    def test_clean_report(self):
        report = build_report([balance(10)], [layer(10, 10)])

        assert report.is_valid
        assert report.layers_checked == 1
        assert report.balances_checked == 1
        assert report.valuation_drift == {}

    def test_valuation_drift_reported_not_flagged(self):
        # Weighted average says 60, FIFO layers say 50
        report = build_report([balance(10, total_value="60", wac="6")], [layer(10, 10, unit_cost="5")])

        assert report.is_valid
        assert report.valuation_drift == {KEY.canonical: Decimal("10")}

    def test_orphan_layers_without_balance(self):
        report = build_report([balance(10)], [layer(10, 10), layer(4, 4, key=OTHER)])

        orphan = report.by_kind(IssueKind.BALANCE_LAYER_MISMATCH)
        assert len(orphan) == 1
        assert orphan[0].stock_key == OTHER.canonical

    def test_layers_only(self):
        report = build_report([balance(99)], [layer(10, 12)], reconcile_balances=False)

        assert report.balances_checked == 0
        assert kinds(report.issues) == {IssueKind.REMAINING_EXCEEDS_ORIGINAL}
