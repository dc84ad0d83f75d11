"""Kernel infrastructure services: sequences and stock key locks."""

from coldstore_kernel.services.sequence_service import SequenceCounter, SequenceService
from coldstore_kernel.services.stock_lock import StockLockManager

__all__ = ["SequenceCounter", "SequenceService", "StockLockManager"]
