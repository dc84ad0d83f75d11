"""
ColdStore Kernel - inventory costing and stock ledger core.

A FIFO cost-layer store and derived per-stock-key balance ledger with:
- Oldest-first layer consumption
- Weighted-average balance valuation
- Atomic movements (receipt, issue, transfer, adjustment)
- Immutable transaction audit records
"""

__version__ = "0.1.0"
