"""
coldstore_services.balance_ledger -- per-stock-key quantity and valuation rows.

Responsibility:
    Maintain one Balance row per stock key: on-hand, reserved and available
    quantity, weighted-average cost and total value.  Rows are created
    lazily on first movement.  Answers availability checks and handles
    reservations.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    The arithmetic lives in coldstore_engines.ledger; this module locks the
    row, feeds its state to the engine and writes the result back.

Invariants enforced:
    - quantity_on_hand >= 0 after every movement (InsufficientStockError).
    - quantity_available == quantity_on_hand - quantity_reserved on every
      write.
    - Inflows re-average the weighted-average cost; outflows carry it.

Failure modes:
    - InsufficientStockError from ``apply_movement`` / ``ensure_available``.
    - StockReservationError from ``reserve`` / ``release``.

Concurrency:
    ``_lock_row`` takes ``SELECT ... FOR UPDATE`` on the row (PostgreSQL).
    A first-insert race between processes is absorbed by a savepoint retry.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coldstore_engines import ledger as ledger_engine
from coldstore_engines.ledger import BalanceDelta, BalanceState
from coldstore_kernel.domain.clock import Clock
from coldstore_kernel.domain.dtos import BalanceInfo, StockAvailability
from coldstore_kernel.domain.movements import TransactionType
from coldstore_kernel.domain.stock_key import StockKey
from coldstore_kernel.exceptions import InsufficientStockError
from coldstore_kernel.logging_config import get_logger
from coldstore_kernel.models.balance import InventoryBalanceModel

logger = get_logger("services.balance_ledger")


def _state(row: InventoryBalanceModel) -> BalanceState:
    return BalanceState(
        on_hand=row.quantity_on_hand,
        reserved=row.quantity_reserved,
        weighted_average_cost=row.weighted_average_cost,
        total_value=row.total_value,
    )


class BalanceLedger:
    """
    Balance row mutator.

    Contract:
        Receives Session and Clock via constructor injection.  Never
        commits.  Callers hold the stock key lock.
    Guarantees:
        - ``get`` / ``check_availability`` never create rows.
        - ``apply_movement`` returns the before/after states it wrote.
    """

    def __init__(self, session: Session, clock: Clock):
        self._session = session
        self._clock = clock

    def _find(self, key: StockKey, *, for_update: bool) -> InventoryBalanceModel | None:
        stmt = select(InventoryBalanceModel).where(
            InventoryBalanceModel.stock_key == key.canonical
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one_or_none()

    def _lock_row(self, key: StockKey) -> InventoryBalanceModel:
        """Locked row for ``key``, inserting a zeroed one on first use."""
        row = self._find(key, for_update=True)
        if row is not None:
            return row

        savepoint = self._session.begin_nested()
        try:
            now = self._clock.now()
            row = InventoryBalanceModel.zeroed(key)
            row.created_at = now
            row.updated_at = now
            self._session.add(row)
            self._session.flush()
            savepoint.commit()
            logger.debug("balance_row_created", extra={"stock_key": key.canonical})
            return row
        except IntegrityError:
            logger.debug("balance_row_race_retry", extra={"stock_key": key.canonical})
            savepoint.rollback()
            return self._find(key, for_update=True)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: StockKey) -> BalanceInfo:
        row = self._find(key, for_update=False)
        return row.to_info() if row else BalanceInfo.empty(key)

    def check_availability(self, key: StockKey, quantity: Decimal) -> StockAvailability:
        balance = self.get(key)
        return StockAvailability(
            stock_key=key,
            requested=quantity,
            quantity_on_hand=balance.quantity_on_hand,
            quantity_reserved=balance.quantity_reserved,
            quantity_available=balance.quantity_available,
        )

    def ensure_available(self, key: StockKey, quantity: Decimal) -> StockAvailability:
        """Raise InsufficientStockError unless ``quantity`` is available."""
        availability = self.check_availability(key, quantity)
        if not availability.is_available:
            logger.warning(
                "insufficient_stock",
                extra={
                    "stock_key": key.canonical,
                    "required": str(quantity),
                    "available": str(availability.quantity_available),
                },
            )
            raise InsufficientStockError(
                key.canonical, quantity, availability.quantity_available
            )
        return availability

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _write(self, row: InventoryBalanceModel, state: BalanceState) -> None:
        row.quantity_on_hand = state.on_hand
        row.quantity_reserved = state.reserved
        row.weighted_average_cost = state.weighted_average_cost
        row.total_value = state.total_value
        row.recompute_available()
        row.updated_at = self._clock.now()

    def apply_movement(
        self,
        key: StockKey,
        quantity_change: Decimal,
        unit_cost: Decimal,
        *,
        movement_date: date,
        movement_type: TransactionType,
    ) -> BalanceDelta:
        """
        Add (positive) or remove (negative) stock at ``unit_cost``.

        Raises:
            InsufficientStockError: on-hand would go below zero.
        """
        row = self._lock_row(key)
        before = _state(row)
        after = ledger_engine.apply_movement(
            stock_key=key.canonical,
            state=before,
            quantity_change=quantity_change,
            unit_cost=unit_cost,
        )
        self._write(row, after)
        row.last_movement_date = movement_date
        row.last_movement_type = TransactionType(movement_type).value
        self._session.flush()

        logger.info(
            "balance_updated",
            extra={
                "stock_key": key.canonical,
                "quantity_change": str(quantity_change),
                "unit_cost": str(unit_cost),
                "on_hand": str(after.on_hand),
                "weighted_average_cost": str(after.weighted_average_cost),
                "movement_type": row.last_movement_type,
            },
        )
        return BalanceDelta(
            stock_key=key.canonical,
            quantity_change=quantity_change,
            unit_cost=unit_cost,
            before=before,
            after=after,
        )

    def reserve(self, key: StockKey, quantity: Decimal) -> BalanceInfo:
        row = self._lock_row(key)
        self._write(
            row,
            ledger_engine.reserve(stock_key=key.canonical, state=_state(row), quantity=quantity),
        )
        self._session.flush()
        logger.info(
            "stock_reserved",
            extra={
                "stock_key": key.canonical,
                "quantity": str(quantity),
                "reserved": str(row.quantity_reserved),
            },
        )
        return row.to_info()

    def release(self, key: StockKey, quantity: Decimal) -> BalanceInfo:
        row = self._lock_row(key)
        self._write(
            row,
            ledger_engine.release(stock_key=key.canonical, state=_state(row), quantity=quantity),
        )
        self._session.flush()
        logger.info(
            "stock_reservation_released",
            extra={
                "stock_key": key.canonical,
                "quantity": str(quantity),
                "reserved": str(row.quantity_reserved),
            },
        )
        return row.to_info()
