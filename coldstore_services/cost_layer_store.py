"""
coldstore_services.cost_layer_store -- persistence and mutation of FIFO cost layers.

Responsibility:
    Create cost layers on inbound movements, select and consume them
    oldest-first on outbound movements, move them between locations on
    Transfer (preserving receipt date and unit cost), value a stock key
    from its layers and sweep fully consumed layers past retention.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Layer selection is delegated to the pure FIFO engine
    (coldstore_engines.costing.fifo); this module loads rows, applies the
    engine's breakdown and writes the result back.

Invariants enforced:
    - Layers are consumed in (receipt_date, sequence) order.
    - A consumed layer never goes below zero; reaching zero marks it
      fully consumed.
    - A transferred quantity keeps its source layer's receipt date and
      unit cost at the destination.
    - Sequence numbers come from the locked ``cost_layer`` counter, so they
      are strictly increasing across sessions.

Failure modes:
    - InsufficientStockError from ``select_layers`` when the active layers
      of the stock key hold less than requested.
    - FIFOCalculationError from ``consume`` / ``transfer`` when a breakdown
      line names a missing layer or one holding less than the line uses.
      Either means the layers changed underneath the caller's lock.
    - ValueError from ``create_layer`` on a non-positive quantity or a
      negative unit cost.
    - CostLayerNotFoundError from ``get_layer`` for an unknown id.

Concurrency:
    Callers must hold the stock key lock (StockLockManager) from
    ``select_layers`` through commit.  ``for_update=True`` additionally
    takes row locks on PostgreSQL.

Audit relevance:
    Every layer creation and consumption is logged with the layer id,
    stock key, quantity and unit cost.
"""

from __future__ import annotations

import time
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from coldstore_engines.costing.fifo import FIFOBreakdown, select_layers
from coldstore_kernel.domain.clock import Clock
from coldstore_kernel.domain.dtos import CostLayerInfo, StockValuation
from coldstore_kernel.domain.stock_key import StockKey
from coldstore_kernel.exceptions import CostLayerNotFoundError, FIFOCalculationError
from coldstore_kernel.logging_config import get_logger
from coldstore_kernel.models.cost_layer import CostLayerModel
from coldstore_kernel.services.sequence_service import SequenceService

logger = get_logger("services.cost_layer_store")

ZERO = Decimal("0")


class CostLayerStore:
    """
    FIFO cost layer repository and mutator.

    Contract:
        Receives Session, Clock and SequenceService via constructor
        injection.  Never commits; the Transaction Processor owns the
        unit of work.
    Guarantees:
        - ``create_layer`` returns the new layer as a CostLayerInfo.
        - ``consume`` applies a breakdown exactly, or raises without
          partially applying it to the flushed state.
        - Read methods return DTOs, never ORM instances.
    Non-goals:
        - Does not touch balances; the Balance Ledger does.
        - Does not validate items, units or customers.
    """

    def __init__(self, session: Session, clock: Clock, sequences: SequenceService):
        self._session = session
        self._clock = clock
        self._sequences = sequences

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _active_query(self, key: StockKey):
        return (
            select(CostLayerModel)
            .where(
                CostLayerModel.stock_key == key.canonical,
                CostLayerModel.remaining_quantity > 0,
                CostLayerModel.is_fully_consumed.is_(False),
            )
            .order_by(CostLayerModel.receipt_date, CostLayerModel.sequence)
        )

    def _load_active(self, key: StockKey, for_update: bool) -> list[CostLayerModel]:
        stmt = self._active_query(key)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return list(self._session.execute(stmt).scalars())

    def active_layers(self, key: StockKey, *, for_update: bool = False) -> list[CostLayerInfo]:
        """Active layers of ``key`` in FIFO order."""
        return [row.to_info() for row in self._load_active(key, for_update)]

    def all_layers(self, item_id: str | None = None) -> list[CostLayerInfo]:
        """Every layer, including consumed ones, optionally for one item."""
        stmt = select(CostLayerModel).order_by(
            CostLayerModel.stock_key,
            CostLayerModel.receipt_date,
            CostLayerModel.sequence,
        )
        if item_id is not None:
            stmt = stmt.where(CostLayerModel.item_id == item_id)
        return [row.to_info() for row in self._session.execute(stmt).scalars()]

    def get_layer(self, layer_id: UUID) -> CostLayerInfo:
        """Raises CostLayerNotFoundError for an unknown or swept layer."""
        row = self._session.get(CostLayerModel, layer_id)
        if row is None:
            raise CostLayerNotFoundError(str(layer_id))
        return row.to_info()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_layer(
        self,
        key: StockKey,
        *,
        receipt_date: date,
        quantity: Decimal,
        unit_cost: Decimal,
        receipt_reference: str | None = None,
        receipt_transaction_id: UUID | None = None,
    ) -> CostLayerInfo:
        """Persist a new active layer at the end of ``key``'s FIFO queue for its date."""
        if quantity <= ZERO:
            raise ValueError(f"Cost layer quantity must be positive: {quantity}")
        if unit_cost < ZERO:
            raise ValueError(f"Cost layer unit cost cannot be negative: {unit_cost}")

        now = self._clock.now()
        row = CostLayerModel(
            stock_key=key.canonical,
            item_id=key.item_id,
            customer_id=key.customer_id,
            warehouse_id=key.warehouse_id,
            room_id=key.room_id,
            lot_number=key.lot_number,
            sequence=self._sequences.next_value(SequenceService.COST_LAYER),
            receipt_date=receipt_date,
            receipt_reference=receipt_reference,
            receipt_transaction_id=receipt_transaction_id,
            original_quantity=quantity,
            remaining_quantity=quantity,
            unit_cost=unit_cost,
            is_fully_consumed=False,
            created_at=now,
            updated_at=now,
        )
        self._session.add(row)
        self._session.flush()

        logger.info(
            "cost_layer_created",
            extra={
                "layer_id": str(row.id),
                "stock_key": key.canonical,
                "sequence": row.sequence,
                "receipt_date": receipt_date,
                "quantity": str(quantity),
                "unit_cost": str(unit_cost),
            },
        )
        return row.to_info()

    # ------------------------------------------------------------------
    # Selection and consumption
    # ------------------------------------------------------------------

    def select_layers(
        self,
        key: StockKey,
        quantity: Decimal,
        *,
        for_update: bool = False,
    ) -> FIFOBreakdown:
        """
        Decide which layers would supply ``quantity``, without mutating them.

        Raises:
            InsufficientStockError: active layers hold less than ``quantity``.
        """
        layers = self.active_layers(key, for_update=for_update)
        return select_layers(stock_key=key, quantity_needed=quantity, layers=layers)

    def _load_for_line(self, breakdown: FIFOBreakdown, layer_id: UUID) -> CostLayerModel:
        row = self._session.get(CostLayerModel, layer_id, populate_existing=True)
        if row is None:
            raise FIFOCalculationError(
                "Cost layer in breakdown no longer exists",
                stock_key=breakdown.stock_key.canonical,
                layer_id=str(layer_id),
            )
        return row

    def _check_line(self, breakdown: FIFOBreakdown, rows: list[CostLayerModel]) -> None:
        for line, row in zip(breakdown.lines, rows):
            if row.stock_key != breakdown.stock_key.canonical:
                raise FIFOCalculationError(
                    f"Layer belongs to {row.stock_key}",
                    stock_key=breakdown.stock_key.canonical,
                    layer_id=str(row.id),
                )
            if row.remaining_quantity < line.quantity_used:
                raise FIFOCalculationError(
                    f"Layer holds {row.remaining_quantity}, breakdown uses "
                    f"{line.quantity_used}",
                    stock_key=breakdown.stock_key.canonical,
                    layer_id=str(row.id),
                )

    def consume(self, breakdown: FIFOBreakdown) -> list[CostLayerInfo]:
        """
        Decrement the layers named by ``breakdown``.

        Every line is verified before any layer is touched.

        Returns:
            The consumed layers after the update, in breakdown order.
        """
        t0 = time.monotonic()
        rows = [self._load_for_line(breakdown, line.layer_id) for line in breakdown.lines]
        self._check_line(breakdown, rows)

        now = self._clock.now()
        for line, row in zip(breakdown.lines, rows):
            row.apply_consumption(line.quantity_used)
            row.updated_at = now
            logger.debug(
                "cost_layer_consumed",
                extra={
                    "layer_id": str(row.id),
                    "stock_key": row.stock_key,
                    "quantity_used": str(line.quantity_used),
                    "remaining": str(row.remaining_quantity),
                    "fully_consumed": row.is_fully_consumed,
                },
            )
        self._session.flush()

        logger.info(
            "cost_layers_consumed",
            extra={
                "stock_key": breakdown.stock_key.canonical,
                "quantity": str(breakdown.quantity_requested),
                "layers_used": len(rows),
                "total_cost": str(breakdown.total_cost),
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return [row.to_info() for row in rows]

    def transfer(self, breakdown: FIFOBreakdown, destination: StockKey) -> list[CostLayerInfo]:
        """
        Move the quantities of ``breakdown`` from its stock key to ``destination``.

        Each source line lands in a destination layer with the same receipt
        date and unit cost: an existing one is replenished when it matches,
        otherwise a new layer is created carrying the source receipt
        reference.

        Returns:
            The destination layers touched, in breakdown order.
        """
        if destination.canonical == breakdown.stock_key.canonical:
            raise ValueError("Transfer destination must differ from the source stock key")

        rows = [self._load_for_line(breakdown, line.layer_id) for line in breakdown.lines]
        self._check_line(breakdown, rows)
        sources = [
            (line, row.receipt_reference, row.receipt_transaction_id)
            for line, row in zip(breakdown.lines, rows)
        ]
        self.consume(breakdown)

        now = self._clock.now()
        landed: list[CostLayerInfo] = []
        for line, receipt_reference, receipt_transaction_id in sources:
            target = self._session.execute(
                select(CostLayerModel)
                .where(
                    CostLayerModel.stock_key == destination.canonical,
                    CostLayerModel.receipt_date == line.receipt_date,
                    CostLayerModel.unit_cost == line.unit_cost,
                )
                .order_by(CostLayerModel.sequence)
                .limit(1)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()

            if target is not None:
                target.apply_replenishment(line.quantity_used)
                target.updated_at = now
                self._session.flush()
                logger.info(
                    "cost_layer_replenished",
                    extra={
                        "layer_id": str(target.id),
                        "stock_key": destination.canonical,
                        "source_layer_id": str(line.layer_id),
                        "quantity": str(line.quantity_used),
                    },
                )
                landed.append(target.to_info())
            else:
                landed.append(
                    self.create_layer(
                        destination,
                        receipt_date=line.receipt_date,
                        quantity=line.quantity_used,
                        unit_cost=line.unit_cost,
                        receipt_reference=receipt_reference,
                        receipt_transaction_id=receipt_transaction_id,
                    )
                )
        return landed

    # ------------------------------------------------------------------
    # Valuation and housekeeping
    # ------------------------------------------------------------------

    def get_stock_valuation(
        self,
        key: StockKey,
        as_of_date: date | None = None,
    ) -> StockValuation:
        """
        FIFO value of ``key``: sum of remaining * unit_cost over active layers.

        ``as_of_date`` restricts to layers received on or before that date.
        Only current remaining quantities are known, so this is not a
        historical valuation.
        """
        layers = self.active_layers(key)
        if as_of_date is not None:
            layers = [layer for layer in layers if layer.receipt_date <= as_of_date]

        total_quantity = sum((layer.remaining_quantity for layer in layers), ZERO)
        total_value = sum((layer.remaining_value for layer in layers), ZERO)
        return StockValuation(
            stock_key=key,
            total_quantity=total_quantity,
            total_value=total_value,
            average_cost=total_value / total_quantity if total_quantity > ZERO else ZERO,
            layer_count=len(layers),
            oldest_receipt_date=layers[0].receipt_date if layers else None,
            newest_receipt_date=max((l.receipt_date for l in layers), default=None),
        )

    def cleanup_consumed_layers(self, older_than_days: int = 90) -> int:
        """
        Delete fully consumed layers last updated more than ``older_than_days`` ago.

        Active layers are never touched.  Returns the number removed.
        """
        if older_than_days < 0:
            raise ValueError("older_than_days cannot be negative")
        cutoff = self._clock.now() - timedelta(days=older_than_days)
        rows = list(
            self._session.execute(
                select(CostLayerModel).where(
                    CostLayerModel.is_fully_consumed.is_(True),
                    CostLayerModel.remaining_quantity == 0,
                    CostLayerModel.updated_at < cutoff,
                )
            ).scalars()
        )
        for row in rows:
            self._session.delete(row)
        self._session.flush()

        logger.info(
            "consumed_layers_cleaned_up",
            extra={
                "removed": len(rows),
                "older_than_days": older_than_days,
                "cutoff": cutoff,
            },
        )
        return len(rows)
