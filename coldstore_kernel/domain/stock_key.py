"""
StockKey -- identity of an independently costed stock position.

Responsibility:
    A stock key names the pool of stock that movements compete for:
    (item, customer, warehouse, room, lot).  Customer, room and lot are
    optional; an absent component is its own partition, not a wildcard.
    Cost layers and balance rows are both partitioned by the canonical
    string form, so equal keys always meet on the same rows and the same
    in-process lock.

Architecture position:
    Kernel > Domain -- pure value object, zero I/O.

Invariants enforced:
    - item_id and warehouse_id are required and non-empty.
    - Components never contain the separator, so ``canonical`` is injective.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

_SEPARATOR = "|"
_ABSENT = "-"


def _clean(value: str | None, name: str, required: bool) -> str | None:
    if value is None:
        if required:
            raise ValueError(f"StockKey.{name} is required")
        return None
    value = str(value).strip()
    if not value:
        if required:
            raise ValueError(f"StockKey.{name} is required")
        return None
    if _SEPARATOR in value or value == _ABSENT:
        raise ValueError(f"StockKey.{name} contains a reserved value: {value!r}")
    return value


@dataclass(frozen=True, slots=True)
class StockKey:
    """Immutable (item, customer, warehouse, room, lot) partition key."""

    item_id: str
    warehouse_id: str
    customer_id: str | None = None
    room_id: str | None = None
    lot_number: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "item_id", _clean(self.item_id, "item_id", True))
        object.__setattr__(
            self, "warehouse_id", _clean(self.warehouse_id, "warehouse_id", True)
        )
        object.__setattr__(
            self, "customer_id", _clean(self.customer_id, "customer_id", False)
        )
        object.__setattr__(self, "room_id", _clean(self.room_id, "room_id", False))
        object.__setattr__(
            self, "lot_number", _clean(self.lot_number, "lot_number", False)
        )

    @property
    def canonical(self) -> str:
        """Stable string form; doubles as the lock name and the partition column."""
        parts = (
            self.item_id,
            self.customer_id,
            self.warehouse_id,
            self.room_id,
            self.lot_number,
        )
        return _SEPARATOR.join(p if p is not None else _ABSENT for p in parts)

    @classmethod
    def parse(cls, canonical: str) -> StockKey:
        parts = canonical.split(_SEPARATOR)
        if len(parts) != 5:
            raise ValueError(f"Malformed stock key: {canonical!r}")
        item_id, customer_id, warehouse_id, room_id, lot_number = (
            None if p == _ABSENT else p for p in parts
        )
        return cls(
            item_id=item_id,
            warehouse_id=warehouse_id,
            customer_id=customer_id,
            room_id=room_id,
            lot_number=lot_number,
        )

    def relocated(self, warehouse_id: str, room_id: str | None) -> StockKey:
        """Same item, customer and lot at another location."""
        return replace(self, warehouse_id=warehouse_id, room_id=room_id)

    def same_location(self, other: StockKey) -> bool:
        return (self.warehouse_id, self.room_id) == (other.warehouse_id, other.room_id)

    def __str__(self) -> str:
        return self.canonical
