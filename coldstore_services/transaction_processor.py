"""
coldstore_services.transaction_processor -- atomic application of stock movements.

Responsibility:
    Accept a MovementRequest, validate it, apply it to the Cost Layer Store
    and the Balance Ledger through the handler for its type, persist the
    immutable transaction record with its FIFO cost breakdown, and commit
    all of it as one unit of work.

Architecture position:
    Services -- the only writer of layers and balances on the movement
    path.  Owns the transaction boundary: commit on success, rollback on
    any failure.

Processing stages:
    validated -> layers_resolved -> balance_updated -> layers_committed
    -> persisted.  A failure at any stage rolls everything back; the
    caller sees the typed error and the stores are exactly as before.

Concurrency:
    Every stock key the movement touches is locked (StockLockManager) in
    canonical order before the first database statement and held through
    commit.  All reads, including validation lookups, happen under the
    lock.  Transient database conflicts (deadlock, serialization failure,
    SQLite busy) are retried with exponential backoff, then surface as
    ConcurrencyConflictError.

Failure modes:
    - InvalidTransactionError, ItemNotFoundError, CustomerNotFoundError:
      rejected before any mutation.
    - InsufficientStockError: not enough available stock.
    - FIFOCalculationError: layers disagree with the breakdown; logged at
      ERROR as a correctness alert and never retried.
    - StockLockTimeoutError / ConcurrencyConflictError: retryable.

Audit relevance:
    Each movement logs its start, every stage, and its completion or
    rejection under a LogContext carrying the transaction id, actor and
    stock key.  After commit the record is handed to the posting bridge;
    a bridge failure is logged and never undoes the movement.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from coldstore_config import get_active_settings
from coldstore_config.schema import EngineSettings
from coldstore_kernel.domain.clock import Clock, SystemClock
from coldstore_kernel.domain.dtos import BalanceInfo, InventoryTransactionRecord
from coldstore_kernel.domain.movements import (
    MovementDirection,
    MovementRequest,
    TransactionType,
)
from coldstore_kernel.domain.stock_key import StockKey
from coldstore_kernel.exceptions import (
    ColdStoreError,
    ConcurrencyConflictError,
    CustomerNotFoundError,
    FIFOCalculationError,
    InvalidTransactionError,
    ItemNotFoundError,
)
from coldstore_kernel.logging_config import LogContext, get_logger
from coldstore_kernel.models.transaction import (
    InventoryTransactionModel,
    TransactionCostLineModel,
)
from coldstore_kernel.services.sequence_service import SequenceService
from coldstore_kernel.services.stock_lock import StockLockManager
from coldstore_services.balance_ledger import BalanceLedger
from coldstore_services.cost_layer_store import CostLayerStore
from coldstore_services.movement_handlers import (
    MovementContext,
    MovementHandlerRegistry,
    MovementOutcome,
    ProcessingStage,
    default_registry,
)
from coldstore_services.reference_data import (
    CustomerDirectory,
    FiscalPeriodResolver,
    ItemCatalog,
    ItemInfo,
    SqlCustomerDirectory,
    SqlFiscalPeriodResolver,
    SqlItemCatalog,
)

logger = get_logger("services.transaction_processor")

ZERO = Decimal("0")

PostingBridge = Callable[[InventoryTransactionRecord], None]

# Messages of database errors worth another attempt
_TRANSIENT_MARKERS = (
    "deadlock",
    "could not serialize",
    "database is locked",
    "lock timeout",
)

_default_locks: StockLockManager | None = None


def default_lock_manager(timeout_seconds: float = 10.0) -> StockLockManager:
    """
    Process-wide lock map shared by processors that are not given one.

    ``timeout_seconds`` only sets the map's default on the first call.
    Processors on the shared map pass their own ``lock_timeout_seconds``
    to every ``hold``, so later settings are never ignored.
    """
    global _default_locks
    if _default_locks is None:
        _default_locks = StockLockManager(timeout_seconds)
    return _default_locks


def _is_transient(error: OperationalError) -> bool:
    text = str(error.orig if error.orig is not None else error).lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def _uom_value(value) -> str:
    return str(getattr(value, "value", value))


class TransactionProcessor:
    """
    Applies stock movements.

    Contract:
        Receives a Session via constructor injection and commits it once
        per successful movement.  Processors in different threads must use
        different sessions and share one StockLockManager (the process-wide
        default unless one is passed).
    Guarantees:
        - ``process`` returns the persisted record, with the engine-derived
          unit and total cost and the FIFO breakdown.
        - A rejected movement leaves layers, balances and sequence
          counters unchanged.
    Non-goals:
        - Does not post to the general ledger; it hands the record to
          ``posting_bridge`` after commit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        settings: EngineSettings | None = None,
        locks: StockLockManager | None = None,
        handlers: MovementHandlerRegistry | None = None,
        item_catalog: ItemCatalog | None = None,
        customers: CustomerDirectory | None = None,
        fiscal_periods: FiscalPeriodResolver | None = None,
        posting_bridge: PostingBridge | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or get_active_settings()
        if locks is None:
            locks = default_lock_manager(self._settings.lock_timeout_seconds)
            self._lock_timeout: float | None = self._settings.lock_timeout_seconds
        else:
            self._lock_timeout = None
        self._locks = locks
        self._handlers = handlers or default_registry()
        missing = set(TransactionType) - set(self._handlers.transaction_types())
        if missing:
            raise ValueError(
                f"No movement handler for {sorted(t.value for t in missing)}"
            )
        self._catalog = item_catalog or SqlItemCatalog(session)
        self._customers = customers or SqlCustomerDirectory(session)
        self._periods = fiscal_periods or SqlFiscalPeriodResolver(session)
        self._posting_bridge = posting_bridge

        self._sequences = SequenceService(session)
        self._store = CostLayerStore(session, self._clock, self._sequences)
        self._ledger = BalanceLedger(session, self._clock)

    @property
    def store(self) -> CostLayerStore:
        return self._store

    @property
    def ledger(self) -> BalanceLedger:
        return self._ledger

    # ------------------------------------------------------------------
    # Movements
    # ------------------------------------------------------------------

    def process(self, request: MovementRequest) -> InventoryTransactionRecord:
        """
        Apply ``request`` atomically and return the persisted transaction.

        Raises:
            ColdStoreError subclasses; see module docstring.
        """
        transaction_id = uuid4()
        with LogContext.bind(
            transaction_id=str(transaction_id),
            actor_id=request.created_by,
        ):
            logger.info(
                "movement_started",
                extra={
                    "transaction_type": request.transaction_type.value,
                    "item_id": request.item_id,
                    "quantity": str(request.quantity),
                    "transaction_date": request.transaction_date,
                },
            )
            t0 = time.monotonic()
            try:
                keys = self._check_shape(request)
                with LogContext.bind(stock_key=keys[0].canonical if keys else None):
                    record = self._run_with_retries(request, transaction_id, keys)
            except FIFOCalculationError as e:
                logger.error(
                    "fifo_correctness_alert",
                    extra={
                        "error_code": e.code,
                        "reason": e.reason,
                        "layer_id": e.layer_id,
                        "failed_stock_key": e.stock_key,
                    },
                    exc_info=True,
                )
                raise
            except ColdStoreError as e:
                logger.warning(
                    "movement_rejected",
                    extra={
                        "error_code": e.code,
                        "error": str(e),
                        "retryable": e.retryable,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                raise

            logger.info(
                "movement_completed",
                extra={
                    "transaction_number": record.transaction_number,
                    "unit_cost": str(record.unit_cost),
                    "total_cost": str(record.total_cost),
                    "layers_used": len(record.cost_breakdown),
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            self._hand_off(record)
            return record

    def _run_with_retries(
        self,
        request: MovementRequest,
        transaction_id: UUID,
        keys: list[StockKey],
    ) -> InventoryTransactionRecord:
        attempts = self._settings.max_conflict_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                with self._locks.hold(keys, self._lock_timeout):
                    try:
                        record = self._process_once(request, transaction_id)
                        self._session.commit()
                        return record
                    except Exception:
                        self._session.rollback()
                        raise
            except OperationalError as e:
                if not _is_transient(e):
                    raise
                if attempt == attempts:
                    raise ConcurrencyConflictError(attempts, str(e.orig)) from e
                delay = self._settings.retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "movement_conflict_retry",
                    extra={"attempt": attempt, "delay_seconds": delay},
                )
                time.sleep(delay)
        raise AssertionError("unreachable")

    def _process_once(
        self,
        request: MovementRequest,
        transaction_id: UUID,
    ) -> InventoryTransactionRecord:
        item = self._check_references(request)
        self._advance(ProcessingStage.VALIDATED)

        ctx = MovementContext(
            request=request,
            transaction_id=transaction_id,
            item=item,
            store=self._store,
            ledger=self._ledger,
            catalog=self._catalog,
            advance=self._advance,
        )
        outcome = self._handlers.get(request.transaction_type).apply(ctx)

        row = self._persist(request, transaction_id, outcome)
        self._advance(ProcessingStage.PERSISTED)
        return row.to_record()

    @staticmethod
    def _advance(stage: ProcessingStage) -> None:
        logger.debug("movement_stage", extra={"stage": stage.value})

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _check_shape(self, request: MovementRequest) -> list[StockKey]:
        """Checks needing no collaborators.  Returns the keys to lock."""
        ttype = request.transaction_type
        quantity = request.quantity

        if ttype == TransactionType.ADJUSTMENT:
            if quantity == ZERO:
                raise InvalidTransactionError("Adjustment quantity cannot be zero", "quantity")
        elif quantity <= ZERO:
            raise InvalidTransactionError("Quantity must be greater than zero", "quantity")

        if request.unit_cost is not None and request.unit_cost < ZERO:
            raise InvalidTransactionError("Unit cost cannot be negative", "unit_cost")
        if request.unit_cost is None and request.direction != MovementDirection.OUT:
            raise InvalidTransactionError(
                f"Unit cost is required for {ttype.value.lower()} transactions",
                "unit_cost",
            )

        if ttype == TransactionType.TRANSFER:
            if not request.from_warehouse_id or not request.to_warehouse_id:
                raise InvalidTransactionError(
                    "From and To warehouses are required for transfers",
                    "to_warehouse_id" if request.from_warehouse_id else "from_warehouse_id",
                )
            if request.warehouse_id != request.from_warehouse_id:
                raise InvalidTransactionError(
                    "Warehouse of a transfer must be its source warehouse",
                    "warehouse_id",
                )
        elif not request.warehouse_id:
            raise InvalidTransactionError("Warehouse is required", "warehouse_id")

        try:
            keys = request.touched_keys()
        except ValueError as e:
            raise InvalidTransactionError(str(e), "stock_key") from e

        # Compared after key normalization: "WH-1 " and "WH-1" are one location.
        if ttype == TransactionType.TRANSFER and request.stock_key.same_location(
            request.destination_key
        ):
            raise InvalidTransactionError(
                "Source and destination locations cannot be the same",
                "to_warehouse_id",
            )
        return keys

    def _check_references(self, request: MovementRequest) -> ItemInfo:
        """Checks against the item catalog and customer directory."""
        item = self._catalog.get_item(request.item_id)
        if item is None or not item.is_active:
            raise ItemNotFoundError(request.item_id, "not found or inactive")

        if request.customer_id and not self._customers.exists(request.customer_id):
            raise CustomerNotFoundError(request.customer_id)

        requested_uom = _uom_value(request.unit_of_measure)
        if requested_uom != item.unit_of_measure:
            raise InvalidTransactionError(
                f"Unit of measure mismatch. Item uses {item.unit_of_measure}, "
                f"transaction uses {requested_uom}",
                "unit_of_measure",
            )

        if (
            item.is_perishable
            and request.expiry_date is not None
            and request.expiry_date <= request.transaction_date
        ):
            raise InvalidTransactionError(
                "Expiry date must be after transaction date for perishable items",
                "expiry_date",
            )
        return item

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _persist(
        self,
        request: MovementRequest,
        transaction_id: UUID,
        outcome: MovementOutcome,
    ) -> InventoryTransactionModel:
        number = self._sequences.next_transaction_number(
            request.transaction_type.number_prefix,
            request.transaction_date.year,
            self._settings.transaction_number_width,
        )
        now = self._clock.now()
        row = InventoryTransactionModel(
            id=transaction_id,
            transaction_number=number,
            transaction_type=request.transaction_type.value,
            transaction_date=request.transaction_date,
            item_id=request.item_id,
            customer_id=request.customer_id,
            warehouse_id=request.warehouse_id,
            room_id=request.room_id,
            from_warehouse_id=request.from_warehouse_id,
            from_room_id=request.from_room_id,
            to_warehouse_id=request.to_warehouse_id,
            to_room_id=request.to_room_id,
            quantity=request.quantity,
            unit_of_measure=_uom_value(request.unit_of_measure),
            unit_cost=outcome.unit_cost,
            total_cost=outcome.total_cost,
            lot_number=request.lot_number,
            batch_number=request.batch_number,
            expiry_date=request.expiry_date,
            manufacture_date=request.manufacture_date,
            reference_type=request.reference_type.value if request.reference_type else None,
            reference_id=request.reference_id,
            reference_number=request.reference_number,
            notes=request.notes,
            fiscal_period_id=self._periods.resolve(request.transaction_date),
            created_by=request.created_by,
            is_posted_to_gl=False,
            created_at=now,
            updated_at=now,
            cost_lines=[
                TransactionCostLineModel(
                    line_number=n,
                    layer_id=entry.layer_id,
                    quantity_used=entry.quantity_used,
                    unit_cost=entry.unit_cost,
                    line_cost=entry.line_cost,
                    receipt_date=entry.receipt_date,
                    lot_number=entry.lot_number,
                )
                for n, entry in enumerate(outcome.cost_breakdown, start=1)
            ],
        )
        self._session.add(row)
        self._session.flush()
        logger.info(
            "transaction_persisted",
            extra={
                "transaction_number": number,
                "fiscal_period_id": row.fiscal_period_id,
                "cost_lines": len(row.cost_lines),
            },
        )
        return row

    def _hand_off(self, record: InventoryTransactionRecord) -> None:
        if self._posting_bridge is None:
            return
        try:
            self._posting_bridge(record)
        except Exception:
            logger.exception(
                "posting_bridge_failed",
                extra={"transaction_number": record.transaction_number},
            )

    # ------------------------------------------------------------------
    # Reservations and housekeeping
    # ------------------------------------------------------------------

    def _locked_unit_of_work(self, keys: list[StockKey], work: Callable[[], object]):
        with self._locks.hold(keys, self._lock_timeout):
            try:
                result = work()
                self._session.commit()
                return result
            except Exception:
                self._session.rollback()
                raise

    def reserve_stock(self, key: StockKey, quantity: Decimal) -> BalanceInfo:
        """Set aside available stock of ``key``; commits."""
        with LogContext.bind(stock_key=key.canonical):
            return self._locked_unit_of_work(
                [key], lambda: self._ledger.reserve(key, Decimal(quantity))
            )

    def release_reservation(self, key: StockKey, quantity: Decimal) -> BalanceInfo:
        """Return reserved stock of ``key`` to available; commits."""
        with LogContext.bind(stock_key=key.canonical):
            return self._locked_unit_of_work(
                [key], lambda: self._ledger.release(key, Decimal(quantity))
            )

    def run_housekeeping(self, older_than_days: int | None = None) -> int:
        """Sweep fully consumed layers past retention; commits."""
        days = self._settings.layer_retention_days if older_than_days is None else older_than_days
        try:
            removed = self._store.cleanup_consumed_layers(days)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        return removed
