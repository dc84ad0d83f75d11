"""Read-only selectors returning DTOs."""

from coldstore_kernel.selectors.balance_selector import BalanceSelector
from coldstore_kernel.selectors.base import BaseSelector
from coldstore_kernel.selectors.transaction_selector import TransactionSelector

__all__ = ["BalanceSelector", "BaseSelector", "TransactionSelector"]
