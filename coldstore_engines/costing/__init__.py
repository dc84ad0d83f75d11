"""Cost flow engines."""

from coldstore_engines.costing.fifo import (
    FIFOBreakdown,
    FIFOBreakdownLine,
    fifo_order,
    select_layers,
)

__all__ = ["FIFOBreakdown", "FIFOBreakdownLine", "fifo_order", "select_layers"]
