"""
coldstore_engines.ledger -- balance arithmetic for one stock key.

Responsibility:
    Compute the next balance state for a quantity movement, a reservation
    or a release.  Weighted-average cost is recomputed on inflows and
    carried unchanged through outflows.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The Balance Ledger service
    loads and locks the row, calls these functions and writes the result
    back.

Invariants enforced:
    - on_hand never goes below zero (InsufficientStockError otherwise).
    - 0 <= reserved <= on_hand (StockReservationError otherwise).
    - available == on_hand - reserved in every returned state.
    - Inflow:  wac' = (on_hand * wac + change * unit_cost) / on_hand'
               value' = on_hand * wac + change * unit_cost
    - Outflow: wac' = wac, value' = on_hand' * wac
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal

from coldstore_engines.tracer import traced_engine
from coldstore_kernel.exceptions import InsufficientStockError, StockReservationError

ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class BalanceState:
    """Quantities and valuation of one stock key at a point in time."""

    on_hand: Decimal = ZERO
    reserved: Decimal = ZERO
    weighted_average_cost: Decimal = ZERO
    total_value: Decimal = ZERO

    @property
    def available(self) -> Decimal:
        return self.on_hand - self.reserved


@dataclass(frozen=True, slots=True)
class BalanceDelta:
    """Before/after pair produced by one movement; returned to handlers."""

    stock_key: str
    quantity_change: Decimal
    unit_cost: Decimal
    before: BalanceState
    after: BalanceState

    @property
    def value_change(self) -> Decimal:
        return self.after.total_value - self.before.total_value


@traced_engine(
    "balance_ledger",
    "1.0",
    fingerprint_fields=("stock_key", "quantity_change"),
    summarize=lambda s: {"on_hand_after": s.on_hand},
)
def apply_movement(
    *,
    stock_key: str,
    state: BalanceState,
    quantity_change: Decimal,
    unit_cost: Decimal,
) -> BalanceState:
    """
    Next state after adding (positive change) or removing (negative) stock.

    Raises:
        InsufficientStockError: the result would be negative.
        ValueError: quantity_change is zero or unit_cost is negative.
    """
    if quantity_change == ZERO:
        raise ValueError("quantity_change cannot be zero")
    if unit_cost < ZERO:
        raise ValueError(f"unit_cost cannot be negative: {unit_cost}")

    new_qty = state.on_hand + quantity_change
    if new_qty < ZERO:
        raise InsufficientStockError(stock_key, abs(quantity_change), state.on_hand)

    if quantity_change > ZERO:
        old_value = state.on_hand * state.weighted_average_cost
        new_value = old_value + quantity_change * unit_cost
        wac = new_value / new_qty
    else:
        wac = state.weighted_average_cost
        new_value = new_qty * wac

    return BalanceState(
        on_hand=new_qty,
        reserved=state.reserved,
        weighted_average_cost=wac,
        total_value=new_value,
    )


def reserve(*, stock_key: str, state: BalanceState, quantity: Decimal) -> BalanceState:
    """Set aside ``quantity`` of available stock; on-hand is untouched."""
    if quantity <= ZERO:
        raise StockReservationError(stock_key, "reservation quantity must be positive")
    if quantity > state.available:
        raise StockReservationError(
            stock_key,
            f"cannot reserve {quantity}, only {state.available} available",
        )
    return replace(state, reserved=state.reserved + quantity)


def release(*, stock_key: str, state: BalanceState, quantity: Decimal) -> BalanceState:
    """Return reserved stock to available."""
    if quantity <= ZERO:
        raise StockReservationError(stock_key, "release quantity must be positive")
    if quantity > state.reserved:
        raise StockReservationError(
            stock_key,
            f"cannot release {quantity}, only {state.reserved} reserved",
        )
    return replace(state, reserved=state.reserved - quantity)
