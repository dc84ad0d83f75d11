"""
Movement vocabulary -- transaction types, reference types, units of measure
and the inbound MovementRequest.

Architecture position:
    Kernel > Domain -- pure values, zero I/O.  The Transaction Processor
    dispatches on ``TransactionType``; everything a handler needs to know
    about the request is derived here (signed quantity, direction, stock
    keys) so handlers never re-interpret raw fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum

from coldstore_kernel.domain.stock_key import StockKey


class TransactionType(str, Enum):
    """Kinds of stock movement."""

    RECEIPT = "RECEIPT"
    ISSUE = "ISSUE"
    TRANSFER = "TRANSFER"
    ADJUSTMENT = "ADJUSTMENT"

    @property
    def number_prefix(self) -> str:
        return _NUMBER_PREFIXES[self]


_NUMBER_PREFIXES = {
    TransactionType.RECEIPT: "RCP",
    TransactionType.ISSUE: "ISS",
    TransactionType.TRANSFER: "TRF",
    TransactionType.ADJUSTMENT: "ADJ",
}


class ReferenceType(str, Enum):
    """Source document that triggered a movement."""

    GRN = "GRN"
    GDN = "GDN"
    TRANSFER = "TRANSFER"
    ADJUSTMENT = "ADJUSTMENT"
    PURCHASE_ORDER = "PURCHASE_ORDER"
    SALES_ORDER = "SALES_ORDER"
    PHYSICAL_COUNT = "PHYSICAL_COUNT"
    SYSTEM_ADJUSTMENT = "SYSTEM_ADJUSTMENT"


class UnitOfMeasure(str, Enum):
    KG = "KG"
    GRAM = "GRAM"
    TON = "TON"
    POUND = "POUND"
    PALLET = "PALLET"
    CARTON = "CARTON"
    BAG = "BAG"
    SACK = "SACK"
    LITER = "LITER"
    ML = "ML"
    GALLON = "GALLON"
    PIECE = "PIECE"
    DOZEN = "DOZEN"
    CONTAINER = "CONTAINER"
    TRAY = "TRAY"


class MovementDirection(str, Enum):
    """Effect of a movement on the stock key it is posted against."""

    IN = "IN"
    OUT = "OUT"
    RELOCATE = "RELOCATE"


def _to_decimal(value: Decimal | int | str | None, name: str) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, float):
        raise ValueError(f"{name} must not be a float; pass Decimal or str")
    try:
        return value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid {name}: {value!r}") from e


@dataclass(frozen=True)
class MovementRequest:
    """
    Inbound stock movement as accepted from the validation/API layer.

    Contract:
        ``quantity`` is positive for Receipt, Issue and Transfer.  For
        Adjustment the sign carries the direction.  ``unit_cost`` is
        required for Receipt, Transfer and positive Adjustment and is
        ignored for Issue and negative Adjustment.  For Transfer the
        location comes from ``from_*`` / ``to_*``; ``warehouse_id`` and
        ``room_id`` default to the source location.

    Non-goals:
        Structural validation against collaborators (item, customer, unit
        of measure) happens in the Transaction Processor, not here.
    """

    transaction_type: TransactionType
    transaction_date: date
    item_id: str
    quantity: Decimal
    unit_of_measure: UnitOfMeasure | str
    warehouse_id: str | None = None
    customer_id: str | None = None
    room_id: str | None = None
    from_warehouse_id: str | None = None
    from_room_id: str | None = None
    to_warehouse_id: str | None = None
    to_room_id: str | None = None
    unit_cost: Decimal | None = None
    lot_number: str | None = None
    batch_number: str | None = None
    expiry_date: date | None = None
    manufacture_date: date | None = None
    reference_type: ReferenceType | None = None
    reference_id: str | None = None
    reference_number: str | None = None
    notes: str | None = None
    created_by: str | None = None
    metadata: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "transaction_type", TransactionType(self.transaction_type)
        )
        object.__setattr__(self, "quantity", _to_decimal(self.quantity, "quantity"))
        object.__setattr__(self, "unit_cost", _to_decimal(self.unit_cost, "unit_cost"))
        if self.reference_type is not None:
            object.__setattr__(self, "reference_type", ReferenceType(self.reference_type))
        if self.transaction_type == TransactionType.TRANSFER:
            if self.warehouse_id is None:
                object.__setattr__(self, "warehouse_id", self.from_warehouse_id)
            if self.room_id is None:
                object.__setattr__(self, "room_id", self.from_room_id)

    @property
    def direction(self) -> MovementDirection:
        if self.transaction_type == TransactionType.RECEIPT:
            return MovementDirection.IN
        if self.transaction_type == TransactionType.TRANSFER:
            return MovementDirection.RELOCATE
        if self.transaction_type == TransactionType.ADJUSTMENT and self.quantity > 0:
            return MovementDirection.IN
        return MovementDirection.OUT

    @property
    def magnitude(self) -> Decimal:
        """Absolute quantity moved."""
        return abs(self.quantity)

    @property
    def stock_key(self) -> StockKey:
        """Stock key the movement is posted against (source key for Transfer)."""
        return StockKey(
            item_id=self.item_id,
            warehouse_id=self.warehouse_id,
            customer_id=self.customer_id,
            room_id=self.room_id,
            lot_number=self.lot_number,
        )

    @property
    def destination_key(self) -> StockKey | None:
        if self.transaction_type != TransactionType.TRANSFER:
            return None
        return self.stock_key.relocated(self.to_warehouse_id, self.to_room_id)

    def touched_keys(self) -> list[StockKey]:
        """Every stock key the movement mutates, in canonical lock order."""
        keys = {self.stock_key.canonical: self.stock_key}
        dest = self.destination_key
        if dest is not None:
            keys[dest.canonical] = dest
        return [keys[k] for k in sorted(keys)]
