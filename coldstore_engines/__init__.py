"""
Module: coldstore_engines
Responsibility:
    Re-exports the pure calculation engines: FIFO layer selection, balance
    arithmetic and integrity checks.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import coldstore_kernel domain values, exceptions and logging.
    MUST NOT import coldstore_services.

Invariants enforced:
    - Purity: engines never read the clock or the database; dates and rows
      are passed in by the services.
    - Decimal-only arithmetic; floats are rejected at the request boundary.
    - Determinism: identical inputs always produce identical outputs.
"""

from coldstore_engines.costing.fifo import (
    FIFOBreakdown,
    FIFOBreakdownLine,
    fifo_order,
    select_layers,
)
from coldstore_engines.integrity import (
    IntegrityIssue,
    IntegrityReport,
    IssueKind,
    build_report,
    check_balance,
    check_layer,
)
from coldstore_engines.ledger import (
    BalanceDelta,
    BalanceState,
    apply_movement,
    release,
    reserve,
)

__all__ = [
    "BalanceDelta",
    "BalanceState",
    "FIFOBreakdown",
    "FIFOBreakdownLine",
    "IntegrityIssue",
    "IntegrityReport",
    "IssueKind",
    "apply_movement",
    "build_report",
    "check_balance",
    "check_layer",
    "fifo_order",
    "release",
    "reserve",
    "select_layers",
]
