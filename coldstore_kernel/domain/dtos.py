"""
Read-side DTOs returned by the services and selectors.

All DTOs are frozen dataclasses; callers never receive ORM instances, so a
returned value cannot be used to mutate layers or balances behind the
Transaction Processor's back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from coldstore_kernel.domain.movements import ReferenceType, TransactionType
from coldstore_kernel.domain.stock_key import StockKey


@dataclass(frozen=True, slots=True)
class CostLayerInfo:
    id: UUID
    stock_key: StockKey
    sequence: int
    receipt_date: date
    original_quantity: Decimal
    remaining_quantity: Decimal
    unit_cost: Decimal
    is_fully_consumed: bool
    receipt_reference: str | None = None
    receipt_transaction_id: UUID | None = None

    @property
    def remaining_value(self) -> Decimal:
        return self.remaining_quantity * self.unit_cost


@dataclass(frozen=True, slots=True)
class BalanceInfo:
    """Snapshot of one Balance row."""

    stock_key: StockKey
    quantity_on_hand: Decimal
    quantity_reserved: Decimal
    quantity_available: Decimal
    weighted_average_cost: Decimal
    total_value: Decimal
    last_movement_date: date | None = None
    last_movement_type: TransactionType | None = None

    @classmethod
    def empty(cls, stock_key: StockKey) -> BalanceInfo:
        zero = Decimal("0")
        return cls(
            stock_key=stock_key,
            quantity_on_hand=zero,
            quantity_reserved=zero,
            quantity_available=zero,
            weighted_average_cost=zero,
            total_value=zero,
        )


@dataclass(frozen=True, slots=True)
class StockAvailability:
    """Result of an availability check against a Balance row."""

    stock_key: StockKey
    requested: Decimal
    quantity_on_hand: Decimal
    quantity_reserved: Decimal
    quantity_available: Decimal

    @property
    def is_available(self) -> bool:
        return self.quantity_available >= self.requested

    @property
    def shortfall(self) -> Decimal:
        return max(self.requested - self.quantity_available, Decimal("0"))


@dataclass(frozen=True, slots=True)
class StockValuation:
    """FIFO valuation of a stock key, summed over its active cost layers."""

    stock_key: StockKey
    total_quantity: Decimal
    total_value: Decimal
    average_cost: Decimal
    layer_count: int
    oldest_receipt_date: date | None
    newest_receipt_date: date | None


@dataclass(frozen=True, slots=True)
class CostBreakdownEntry:
    """One consumed layer, as recorded on a persisted transaction."""

    layer_id: UUID
    quantity_used: Decimal
    unit_cost: Decimal
    line_cost: Decimal
    receipt_date: date
    lot_number: str | None = None


@dataclass(frozen=True)
class InventoryTransactionRecord:
    """
    Persisted, immutable audit record of one stock movement.

    ``unit_cost`` and ``total_cost`` are the values the engine derived (FIFO
    cost for Issue, Transfer and negative Adjustment), never the caller's.
    """

    id: UUID
    transaction_number: str
    transaction_type: TransactionType
    transaction_date: date
    item_id: str
    customer_id: str | None
    warehouse_id: str
    room_id: str | None
    from_warehouse_id: str | None
    from_room_id: str | None
    to_warehouse_id: str | None
    to_room_id: str | None
    quantity: Decimal
    unit_of_measure: str
    unit_cost: Decimal
    total_cost: Decimal
    lot_number: str | None
    batch_number: str | None
    expiry_date: date | None
    manufacture_date: date | None
    reference_type: ReferenceType | None
    reference_id: str | None
    reference_number: str | None
    notes: str | None
    fiscal_period_id: str | None
    created_by: str | None
    created_at: datetime | None
    is_posted_to_gl: bool = False
    gl_voucher_id: str | None = None
    posted_at: datetime | None = None
    cost_breakdown: tuple[CostBreakdownEntry, ...] = field(default_factory=tuple)
