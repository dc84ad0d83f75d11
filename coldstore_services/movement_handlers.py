"""
coldstore_services.movement_handlers -- one handler per transaction type.

Responsibility:
    Apply a validated MovementRequest to the Cost Layer Store and the
    Balance Ledger.  Each handler returns the same MovementOutcome shape,
    so the Transaction Processor persists every type the same way.

Architecture position:
    Services -- called only by the Transaction Processor, inside its unit
    of work and under its stock key locks.  Handlers never commit.

Dispatch:
    ``MovementHandlerRegistry`` maps TransactionType -> handler.  The
    default registry carries the four built-in handlers; tests and
    extensions may build their own.

Stage reporting:
    Handlers report LAYERS_RESOLVED, BALANCE_UPDATED and LAYERS_COMMITTED
    through ``MovementContext.advance`` as they pass each point.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from coldstore_engines.costing.fifo import FIFOBreakdown
from coldstore_engines.ledger import BalanceDelta
from coldstore_kernel.domain.dtos import CostBreakdownEntry, CostLayerInfo
from coldstore_kernel.domain.movements import MovementDirection, MovementRequest, TransactionType
from coldstore_kernel.logging_config import get_logger
from coldstore_services.balance_ledger import BalanceLedger
from coldstore_services.cost_layer_store import CostLayerStore
from coldstore_services.reference_data import ItemCatalog, ItemInfo

logger = get_logger("services.movement_handlers")

ZERO = Decimal("0")


class ProcessingStage(str, Enum):
    """Points a movement passes on its way to being persisted."""

    VALIDATED = "validated"
    LAYERS_RESOLVED = "layers_resolved"
    BALANCE_UPDATED = "balance_updated"
    LAYERS_COMMITTED = "layers_committed"
    PERSISTED = "persisted"


@dataclass(frozen=True)
class MovementContext:
    """Everything a handler may touch for one movement."""

    request: MovementRequest
    transaction_id: UUID
    item: ItemInfo
    store: CostLayerStore
    ledger: BalanceLedger
    catalog: ItemCatalog
    advance: Callable[[ProcessingStage], None] = lambda stage: None


@dataclass(frozen=True)
class MovementOutcome:
    """
    What a handler did.

    ``unit_cost`` / ``total_cost`` are the costs recorded on the transaction:
    the caller's (or standard) cost for inbound movements and the FIFO cost
    for outbound ones and transfers.
    """

    unit_cost: Decimal
    total_cost: Decimal
    cost_breakdown: tuple[CostBreakdownEntry, ...] = ()
    balance_deltas: tuple[BalanceDelta, ...] = ()
    layers_created: tuple[CostLayerInfo, ...] = ()


class MovementHandler(ABC):
    """Applies one transaction type."""

    transaction_type: TransactionType

    @abstractmethod
    def apply(self, ctx: MovementContext) -> MovementOutcome:
        ...

    # Shared building blocks ------------------------------------------------

    @staticmethod
    def _inbound(ctx: MovementContext, unit_cost: Decimal) -> MovementOutcome:
        req = ctx.request
        key = req.stock_key
        quantity = req.magnitude
        ctx.advance(ProcessingStage.LAYERS_RESOLVED)

        delta = ctx.ledger.apply_movement(
            key,
            quantity,
            unit_cost,
            movement_date=req.transaction_date,
            movement_type=req.transaction_type,
        )
        ctx.advance(ProcessingStage.BALANCE_UPDATED)

        layer = ctx.store.create_layer(
            key,
            receipt_date=req.transaction_date,
            quantity=quantity,
            unit_cost=unit_cost,
            receipt_reference=req.reference_number,
            receipt_transaction_id=ctx.transaction_id,
        )
        ctx.advance(ProcessingStage.LAYERS_COMMITTED)

        return MovementOutcome(
            unit_cost=unit_cost,
            total_cost=quantity * unit_cost,
            balance_deltas=(delta,),
            layers_created=(layer,),
        )

    @staticmethod
    def _resolve_outbound(ctx: MovementContext) -> FIFOBreakdown:
        req = ctx.request
        key = req.stock_key
        ctx.ledger.ensure_available(key, req.magnitude)
        breakdown = ctx.store.select_layers(key, req.magnitude, for_update=True)
        ctx.advance(ProcessingStage.LAYERS_RESOLVED)
        return breakdown

    @classmethod
    def _outbound(cls, ctx: MovementContext) -> MovementOutcome:
        req = ctx.request
        breakdown = cls._resolve_outbound(ctx)

        delta = ctx.ledger.apply_movement(
            req.stock_key,
            -req.magnitude,
            breakdown.average_cost,
            movement_date=req.transaction_date,
            movement_type=req.transaction_type,
        )
        ctx.advance(ProcessingStage.BALANCE_UPDATED)

        ctx.store.consume(breakdown)
        ctx.advance(ProcessingStage.LAYERS_COMMITTED)

        return MovementOutcome(
            unit_cost=breakdown.average_cost,
            total_cost=breakdown.total_cost,
            cost_breakdown=breakdown.entries(),
            balance_deltas=(delta,),
        )


class ReceiptHandler(MovementHandler):
    transaction_type = TransactionType.RECEIPT

    def apply(self, ctx: MovementContext) -> MovementOutcome:
        outcome = self._inbound(ctx, ctx.request.unit_cost)
        ctx.catalog.record_last_cost(ctx.request.item_id, outcome.unit_cost)
        return outcome


class IssueHandler(MovementHandler):
    transaction_type = TransactionType.ISSUE

    def apply(self, ctx: MovementContext) -> MovementOutcome:
        return self._outbound(ctx)


class TransferHandler(MovementHandler):
    """Source and destination move at the FIFO cost; the caller's cost is ignored."""

    transaction_type = TransactionType.TRANSFER

    def apply(self, ctx: MovementContext) -> MovementOutcome:
        req = ctx.request
        source = req.stock_key
        destination = req.destination_key
        breakdown = self._resolve_outbound(ctx)
        unit_cost = breakdown.average_cost

        # Balance rows are locked in canonical key order
        changes = {source.canonical: (source, -req.magnitude),
                   destination.canonical: (destination, req.magnitude)}
        deltas: dict[str, BalanceDelta] = {}
        for name in sorted(changes):
            key, quantity_change = changes[name]
            deltas[name] = ctx.ledger.apply_movement(
                key,
                quantity_change,
                unit_cost,
                movement_date=req.transaction_date,
                movement_type=req.transaction_type,
            )
        out_delta = deltas[source.canonical]
        in_delta = deltas[destination.canonical]
        ctx.advance(ProcessingStage.BALANCE_UPDATED)

        landed = ctx.store.transfer(breakdown, destination)
        ctx.advance(ProcessingStage.LAYERS_COMMITTED)

        if req.unit_cost is not None and req.unit_cost != unit_cost:
            logger.debug(
                "transfer_cost_replaced",
                extra={
                    "requested_unit_cost": str(req.unit_cost),
                    "fifo_unit_cost": str(unit_cost),
                },
            )
        return MovementOutcome(
            unit_cost=unit_cost,
            total_cost=breakdown.total_cost,
            cost_breakdown=breakdown.entries(),
            balance_deltas=(out_delta, in_delta),
            layers_created=tuple(landed),
        )


class AdjustmentHandler(MovementHandler):
    """Positive adjustments add a layer; negative ones consume like an Issue."""

    transaction_type = TransactionType.ADJUSTMENT

    def apply(self, ctx: MovementContext) -> MovementOutcome:
        if ctx.request.direction == MovementDirection.OUT:
            return self._outbound(ctx)

        unit_cost = ctx.request.unit_cost
        if unit_cost == ZERO:
            unit_cost = ctx.item.standard_cost
            logger.info(
                "adjustment_standard_cost_applied",
                extra={"item_id": ctx.item.item_id, "unit_cost": str(unit_cost)},
            )
        return self._inbound(ctx, unit_cost)


class MovementHandlerRegistry:
    """Maps each TransactionType to the handler that applies it."""

    def __init__(self):
        self._handlers: dict[TransactionType, MovementHandler] = {}

    def register(self, handler: MovementHandler) -> None:
        self._handlers[handler.transaction_type] = handler

    def get(self, transaction_type: TransactionType) -> MovementHandler:
        handler = self._handlers.get(TransactionType(transaction_type))
        if handler is None:
            raise ValueError(f"No movement handler registered for {transaction_type}")
        return handler

    def transaction_types(self) -> list[TransactionType]:
        return list(self._handlers)


def default_registry() -> MovementHandlerRegistry:
    registry = MovementHandlerRegistry()
    for handler in (ReceiptHandler(), IssueHandler(), TransferHandler(), AdjustmentHandler()):
        registry.register(handler)
    return registry
