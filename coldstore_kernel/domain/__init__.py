"""Pure domain values: stock keys, movement vocabulary, clocks and DTOs."""

from coldstore_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from coldstore_kernel.domain.movements import (
    MovementDirection,
    MovementRequest,
    ReferenceType,
    TransactionType,
    UnitOfMeasure,
)
from coldstore_kernel.domain.stock_key import StockKey

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "MovementDirection",
    "MovementRequest",
    "ReferenceType",
    "StockKey",
    "TransactionType",
    "UnitOfMeasure",
]
