"""
Typed Exception Hierarchy for the ColdStore inventory engine.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Stock movements are rejected for many different reasons, and callers react to
them differently: a shortfall is shown to the operator, a lock timeout is
retried, a FIFO inconsistency pages someone. Callers must be able to tell
these apart by TYPE, never by parsing messages.

Every exception:
  1. Has a typed class (catch by type, not message)
  2. Has a class-level CODE attribute (machine-readable)
  3. Carries structured DATA as attributes (required / available quantities,
     stock keys, layer ids), which the structured log formatter emits as
     ``exc_<field>`` entries.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ColdStoreError (base)
    |
    +-- NotFoundError
    |   +-- ItemNotFoundError
    |   +-- CustomerNotFoundError
    |   +-- CostLayerNotFoundError
    |   +-- TransactionNotFoundError
    |
    +-- InvalidTransactionError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- StockReservationError
    |
    +-- CostingError
    |   +-- FIFOCalculationError
    |
    +-- LedgerIntegrityError
    |   +-- LedgerCorruptionError
    |
    +-- ConcurrencyError                (retryable)
    |   +-- StockLockTimeoutError
    |   +-- ConcurrencyConflictError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- PostingError
        +-- AlreadyPostedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Not found       | ITEM_NOT_FOUND              | Item id unknown or inactive
                | CUSTOMER_NOT_FOUND          | Customer id given but unknown
                | COST_LAYER_NOT_FOUND        | Layer id unknown
                | TRANSACTION_NOT_FOUND       | Transaction id / number unknown
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_TRANSACTION         | Movement request fails validation
----------------|-----------------------------|-----------------------------------------
Stock           | INSUFFICIENT_STOCK          | Requested quantity exceeds available
                | STOCK_RESERVATION_FAILED    | Reserve beyond available / release
                |                             | beyond reserved
----------------|-----------------------------|-----------------------------------------
Costing         | FIFO_CALCULATION_ERROR      | Layers cannot cover an allocation the
                |                             | availability check already approved
----------------|-----------------------------|-----------------------------------------
Integrity       | LEDGER_CORRUPTION           | Integrity sweep found violations
----------------|-----------------------------|-----------------------------------------
Concurrency     | STOCK_LOCK_TIMEOUT          | Stock key lock not acquired in time
                | CONCURRENCY_CONFLICT        | DB serialization retries exhausted
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying a transaction record or a
                |                             | layer's cost / receipt date
----------------|-----------------------------|-----------------------------------------
Posting         | ALREADY_POSTED              | Transaction already posted to GL
"""

from decimal import Decimal


class ColdStoreError(Exception):
    """
    Base exception for all inventory engine errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "COLDSTORE_ERROR"
    retryable: bool = False


# Not-found exceptions


class NotFoundError(ColdStoreError):
    """Base exception for missing collaborator or record lookups."""

    code: str = "NOT_FOUND"


class ItemNotFoundError(NotFoundError):
    """Inventory item does not exist or is inactive."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, item_id: str, reason: str = "not found"):
        self.item_id = item_id
        self.reason = reason
        super().__init__(f"Inventory item {item_id} {reason}")


class CustomerNotFoundError(NotFoundError):
    """Customer referenced by a movement does not exist."""

    code: str = "CUSTOMER_NOT_FOUND"

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(f"Customer not found: {customer_id}")


class CostLayerNotFoundError(NotFoundError):
    """Cost layer with the given id does not exist."""

    code: str = "COST_LAYER_NOT_FOUND"

    def __init__(self, layer_id: str):
        self.layer_id = layer_id
        super().__init__(f"Cost layer not found: {layer_id}")


class TransactionNotFoundError(NotFoundError):
    """Inventory transaction with the given id or number does not exist."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_ref: str):
        self.transaction_ref = transaction_ref
        super().__init__(f"Inventory transaction not found: {transaction_ref}")


# Validation


class InvalidTransactionError(ColdStoreError):
    """Movement request failed validation before any state was touched."""

    code: str = "INVALID_TRANSACTION"

    def __init__(self, reason: str, field: str | None = None):
        self.reason = reason
        self.field = field
        super().__init__(f"Invalid inventory transaction: {reason}")


# Stock exceptions


class StockError(ColdStoreError):
    """Base exception for stock quantity errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """
    Requested quantity exceeds what the stock key can supply.

    Raised by the availability check, by FIFO selection when layers come up
    short, and by the balance ledger as its last line of defence.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, stock_key: str, required: Decimal, available: Decimal):
        self.stock_key = stock_key
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient stock for {stock_key}. "
            f"Required: {required}, Available: {available}"
        )


class StockReservationError(StockError):
    """Reservation or release would break reserved <= on-hand."""

    code: str = "STOCK_RESERVATION_FAILED"

    def __init__(self, stock_key: str, reason: str):
        self.stock_key = stock_key
        self.reason = reason
        super().__init__(f"Stock reservation failed for {stock_key}: {reason}")


# Costing exceptions


class CostingError(ColdStoreError):
    """Base exception for cost-layer arithmetic errors."""

    code: str = "COSTING_ERROR"


class FIFOCalculationError(CostingError):
    """
    Cost layers could not satisfy an allocation that should have succeeded.

    This indicates either a lost race (a layer changed between selection and
    consumption) or drift between balances and layers. It aborts the movement
    and is never retried automatically.
    """

    code: str = "FIFO_CALCULATION_ERROR"

    def __init__(self, reason: str, stock_key: str | None = None, layer_id: str | None = None):
        self.reason = reason
        self.stock_key = stock_key
        self.layer_id = layer_id
        super().__init__(f"FIFO calculation error: {reason}")


# Integrity exceptions


class LedgerIntegrityError(ColdStoreError):
    """Base exception for ledger integrity failures."""

    code: str = "LEDGER_INTEGRITY_ERROR"


class LedgerCorruptionError(LedgerIntegrityError):
    """Integrity sweep found layer or balance violations. Never auto-repaired."""

    code: str = "LEDGER_CORRUPTION"

    def __init__(self, issue_count: int, issues: list[str]):
        self.issue_count = issue_count
        self.issues = issues
        super().__init__(
            f"Inventory ledger corruption detected: {issue_count} issue(s)"
        )


# Concurrency exceptions


class ConcurrencyError(ColdStoreError):
    """Base exception for concurrency-related errors. Safe to retry."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class StockLockTimeoutError(ConcurrencyError):
    """A stock key lock could not be acquired within the timeout."""

    code: str = "STOCK_LOCK_TIMEOUT"

    def __init__(self, stock_key: str, timeout_seconds: float):
        self.stock_key = stock_key
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Timed out after {timeout_seconds}s waiting for stock lock on {stock_key}"
        )


class ConcurrencyConflictError(ConcurrencyError):
    """Database serialization or deadlock failures persisted through all retries."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, attempts: int, detail: str):
        self.attempts = attempts
        self.detail = detail
        super().__init__(
            f"Movement aborted after {attempts} attempt(s) due to concurrent "
            f"modification: {detail}"
        )


# Immutability exceptions


class ImmutabilityError(ColdStoreError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record or field."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Posting hand-off exceptions


class PostingError(ColdStoreError):
    """Base exception for GL posting hand-off errors."""

    code: str = "POSTING_ERROR"


class AlreadyPostedError(PostingError):
    """Transaction already carries a GL voucher."""

    code: str = "ALREADY_POSTED"

    def __init__(self, transaction_id: str, gl_voucher_id: str | None):
        self.transaction_id = transaction_id
        self.gl_voucher_id = gl_voucher_id
        super().__init__(
            f"Inventory transaction {transaction_id} already posted to GL "
            f"(voucher {gl_voucher_id})"
        )
