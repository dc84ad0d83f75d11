"""
coldstore_engines.costing.fifo -- oldest-first cost layer selection.

Responsibility:
    Given the active cost layers of one stock key and a quantity to remove,
    decide which layers supply it and at what cost.  The result is a
    FIFOBreakdown: one line per layer drawn, the total cost and the
    average unit cost.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The Cost Layer Store
    loads layers and applies the breakdown; this module only decides.

Invariants enforced:
    - Layers are drawn in (receipt_date, sequence) order.
    - Each layer supplies min(remaining, still_needed).
    - Sum of quantity_used equals the requested quantity, or the call fails.
    - total_cost == sum(line_cost); average_cost == total_cost / quantity
      (zero when quantity is zero).

Failure modes:
    - InsufficientStockError when the layers' total remaining is short.
    - FIFOCalculationError when the walk ends with quantity unallocated
      despite the total check passing (non-active layers in the input,
      arithmetic drift).
    - ValueError on a negative quantity.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from coldstore_engines.tracer import traced_engine
from coldstore_kernel.domain.dtos import CostBreakdownEntry, CostLayerInfo
from coldstore_kernel.domain.stock_key import StockKey
from coldstore_kernel.exceptions import FIFOCalculationError, InsufficientStockError
from coldstore_kernel.logging_config import get_logger

logger = get_logger("engines.costing.fifo")

ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class FIFOBreakdownLine:
    """Quantity drawn from one layer at that layer's unit cost."""

    layer_id: UUID
    quantity_used: Decimal
    unit_cost: Decimal
    line_cost: Decimal
    receipt_date: date
    lot_number: str | None = None

    def to_entry(self) -> CostBreakdownEntry:
        return CostBreakdownEntry(
            layer_id=self.layer_id,
            quantity_used=self.quantity_used,
            unit_cost=self.unit_cost,
            line_cost=self.line_cost,
            receipt_date=self.receipt_date,
            lot_number=self.lot_number,
        )


@dataclass(frozen=True, slots=True)
class FIFOBreakdown:
    """
    Cost breakdown of one removal from one stock key.

    Guarantees:
        - ``lines`` are in FIFO order.
        - ``quantity_allocated == quantity_requested``.
    """

    stock_key: StockKey
    quantity_requested: Decimal
    lines: tuple[FIFOBreakdownLine, ...]
    total_cost: Decimal
    average_cost: Decimal

    @property
    def quantity_allocated(self) -> Decimal:
        return sum((line.quantity_used for line in self.lines), ZERO)

    @property
    def layer_ids(self) -> tuple[UUID, ...]:
        return tuple(line.layer_id for line in self.lines)

    def entries(self) -> tuple[CostBreakdownEntry, ...]:
        return tuple(line.to_entry() for line in self.lines)

    @classmethod
    def empty(cls, stock_key: StockKey) -> FIFOBreakdown:
        return cls(
            stock_key=stock_key,
            quantity_requested=ZERO,
            lines=(),
            total_cost=ZERO,
            average_cost=ZERO,
        )


def fifo_order(layers: Iterable[CostLayerInfo]) -> list[CostLayerInfo]:
    """Active layers, oldest receipt first, creation sequence breaking ties."""
    active = [
        layer
        for layer in layers
        if layer.remaining_quantity > ZERO and not layer.is_fully_consumed
    ]
    return sorted(active, key=lambda layer: (layer.receipt_date, layer.sequence))


@traced_engine(
    "fifo",
    "1.0",
    fingerprint_fields=("stock_key", "quantity_needed"),
    summarize=lambda b: {"layers_used": len(b.lines), "total_cost": b.total_cost},
)
def select_layers(
    *,
    stock_key: StockKey,
    quantity_needed: Decimal,
    layers: Iterable[CostLayerInfo],
) -> FIFOBreakdown:
    """
    Allocate ``quantity_needed`` across ``layers`` oldest first.

    Preconditions:
        ``layers`` all belong to ``stock_key``.  Inactive layers are ignored.

    Raises:
        InsufficientStockError: total remaining < quantity_needed.
        FIFOCalculationError: allocation did not reach quantity_needed.
    """
    if quantity_needed < ZERO:
        raise ValueError(f"quantity_needed cannot be negative: {quantity_needed}")
    if quantity_needed == ZERO:
        return FIFOBreakdown.empty(stock_key)

    ordered = fifo_order(layers)
    available = sum((layer.remaining_quantity for layer in ordered), ZERO)

    if not ordered or available < quantity_needed:
        logger.warning(
            "fifo_insufficient_layers",
            extra={
                "stock_key": stock_key.canonical,
                "required": str(quantity_needed),
                "available": str(available),
                "layer_count": len(ordered),
            },
        )
        raise InsufficientStockError(stock_key.canonical, quantity_needed, available)

    lines: list[FIFOBreakdownLine] = []
    still_needed = quantity_needed
    total_cost = ZERO

    for layer in ordered:
        if still_needed <= ZERO:
            break
        used = min(layer.remaining_quantity, still_needed)
        line_cost = used * layer.unit_cost
        lines.append(
            FIFOBreakdownLine(
                layer_id=layer.id,
                quantity_used=used,
                unit_cost=layer.unit_cost,
                line_cost=line_cost,
                receipt_date=layer.receipt_date,
                lot_number=layer.stock_key.lot_number,
            )
        )
        total_cost += line_cost
        still_needed -= used

    if still_needed != ZERO:
        raise FIFOCalculationError(
            f"Unable to allocate {still_needed} of {quantity_needed} from cost layers",
            stock_key=stock_key.canonical,
        )

    breakdown = FIFOBreakdown(
        stock_key=stock_key,
        quantity_requested=quantity_needed,
        lines=tuple(lines),
        total_cost=total_cost,
        average_cost=total_cost / quantity_needed,
    )

    logger.debug(
        "fifo_layers_selected",
        extra={
            "stock_key": stock_key.canonical,
            "quantity": str(quantity_needed),
            "layers_used": len(lines),
            "total_cost": str(total_cost),
        },
    )
    return breakdown
