"""
coldstore_engines.integrity -- consistency checks over layers and balances.

Responsibility:
    Pure checks that detect corruption of the Cost Layer Store and drift
    between the Balance Ledger and the layers it summarises.  Findings are
    reported, never repaired.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The IntegrityService loads
    rows and aggregates the findings into an IntegrityReport.

Checks:
    Per layer
        - remaining_quantity < 0
        - remaining_quantity > original_quantity
        - is_fully_consumed but remaining_quantity > 0
        - remaining_quantity == 0 but not is_fully_consumed
        - unit_cost < 0
    Per stock key
        - quantity_on_hand != sum(remaining) over active layers
        - quantity_available != quantity_on_hand - quantity_reserved
        - quantity_reserved > quantity_on_hand
    Valuation drift (informational): the weighted-average total_value and
    the FIFO layer value of a stock key are separate valuations and may
    legitimately differ; the difference is reported, not flagged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Iterable

from coldstore_kernel.domain.dtos import BalanceInfo, CostLayerInfo

ZERO = Decimal("0")


class IssueKind(str, Enum):
    NEGATIVE_REMAINING = "negative_remaining"
    REMAINING_EXCEEDS_ORIGINAL = "remaining_exceeds_original"
    CONSUMED_WITH_REMAINING = "consumed_with_remaining"
    EMPTY_NOT_CONSUMED = "empty_not_consumed"
    NEGATIVE_UNIT_COST = "negative_unit_cost"
    BALANCE_LAYER_MISMATCH = "balance_layer_mismatch"
    AVAILABLE_MISMATCH = "available_mismatch"
    RESERVED_EXCEEDS_ON_HAND = "reserved_exceeds_on_hand"


@dataclass(frozen=True, slots=True)
class IntegrityIssue:
    kind: IssueKind
    stock_key: str
    message: str
    layer_id: str | None = None

    def __str__(self) -> str:
        if self.layer_id:
            return f"Layer {self.layer_id}: {self.message}"
        return f"Stock key {self.stock_key}: {self.message}"


@dataclass(frozen=True)
class IntegrityReport:
    issues: tuple[IntegrityIssue, ...]
    layers_checked: int
    balances_checked: int
    valuation_drift: dict[str, Decimal] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def by_kind(self, kind: IssueKind) -> list[IntegrityIssue]:
        return [issue for issue in self.issues if issue.kind == kind]


def check_layer(layer: CostLayerInfo) -> list[IntegrityIssue]:
    key = layer.stock_key.canonical
    layer_id = str(layer.id)
    found: list[IntegrityIssue] = []

    def add(kind: IssueKind, message: str) -> None:
        found.append(IntegrityIssue(kind, key, message, layer_id))

    if layer.remaining_quantity < ZERO:
        add(IssueKind.NEGATIVE_REMAINING, "Negative remaining quantity")
    if layer.remaining_quantity > layer.original_quantity:
        add(IssueKind.REMAINING_EXCEEDS_ORIGINAL, "Remaining quantity exceeds original quantity")
    if layer.is_fully_consumed and layer.remaining_quantity > ZERO:
        add(IssueKind.CONSUMED_WITH_REMAINING, "Marked as fully consumed but has remaining quantity")
    if not layer.is_fully_consumed and layer.remaining_quantity == ZERO:
        add(IssueKind.EMPTY_NOT_CONSUMED, "Has zero remaining quantity but not marked as fully consumed")
    if layer.unit_cost < ZERO:
        add(IssueKind.NEGATIVE_UNIT_COST, "Negative unit cost")
    return found


def check_balance(balance: BalanceInfo, layers: Iterable[CostLayerInfo]) -> list[IntegrityIssue]:
    """Reconcile one balance row against the layers of the same stock key."""
    key = balance.stock_key.canonical
    found: list[IntegrityIssue] = []

    layer_total = sum(
        (
            layer.remaining_quantity
            for layer in layers
            if layer.remaining_quantity > ZERO and not layer.is_fully_consumed
        ),
        ZERO,
    )
    if balance.quantity_on_hand != layer_total:
        found.append(IntegrityIssue(
            IssueKind.BALANCE_LAYER_MISMATCH,
            key,
            f"On-hand {balance.quantity_on_hand} does not match active layer "
            f"remaining {layer_total}",
        ))
    expected_available = balance.quantity_on_hand - balance.quantity_reserved
    if balance.quantity_available != expected_available:
        found.append(IntegrityIssue(
            IssueKind.AVAILABLE_MISMATCH,
            key,
            f"Available {balance.quantity_available} != on-hand minus reserved "
            f"{expected_available}",
        ))
    if balance.quantity_reserved > balance.quantity_on_hand:
        found.append(IntegrityIssue(
            IssueKind.RESERVED_EXCEEDS_ON_HAND,
            key,
            f"Reserved {balance.quantity_reserved} exceeds on-hand {balance.quantity_on_hand}",
        ))
    return found


def valuation_drift(balance: BalanceInfo, layers: Iterable[CostLayerInfo]) -> Decimal:
    """Weighted-average total value minus FIFO layer value for one stock key."""
    fifo_value = sum(
        (layer.remaining_quantity * layer.unit_cost for layer in layers),
        ZERO,
    )
    return balance.total_value - fifo_value


def build_report(
    balances: Iterable[BalanceInfo],
    layers: Iterable[CostLayerInfo],
    *,
    reconcile_balances: bool = True,
) -> IntegrityReport:
    """Run every layer and balance check and aggregate the findings."""
    layers = list(layers)
    by_key: dict[str, list[CostLayerInfo]] = {}
    issues: list[IntegrityIssue] = []
    for layer in layers:
        by_key.setdefault(layer.stock_key.canonical, []).append(layer)
        issues.extend(check_layer(layer))

    balances = list(balances) if reconcile_balances else []
    drift: dict[str, Decimal] = {}
    seen: set[str] = set()
    for balance in balances:
        key = balance.stock_key.canonical
        seen.add(key)
        key_layers = by_key.get(key, [])
        issues.extend(check_balance(balance, key_layers))
        d = valuation_drift(balance, key_layers)
        if d != ZERO:
            drift[key] = d

    if reconcile_balances:
        # Layers with stock but no balance row at all
        for key, key_layers in by_key.items():
            if key in seen:
                continue
            orphan_total = sum(
                (l.remaining_quantity for l in key_layers if l.remaining_quantity > ZERO),
                ZERO,
            )
            if orphan_total > ZERO:
                issues.append(IntegrityIssue(
                    IssueKind.BALANCE_LAYER_MISMATCH,
                    key,
                    f"Active layers hold {orphan_total} but no balance row exists",
                ))

    return IntegrityReport(
        issues=tuple(issues),
        layers_checked=len(layers),
        balances_checked=len(balances),
        valuation_drift=drift,
    )
