"""ORM models for the inventory engine."""

from coldstore_kernel.models.balance import InventoryBalanceModel
from coldstore_kernel.models.cost_layer import CostLayerModel
from coldstore_kernel.models.reference import (
    CustomerModel,
    FiscalPeriodModel,
    InventoryItemModel,
)
from coldstore_kernel.models.transaction import (
    InventoryTransactionModel,
    TransactionCostLineModel,
)


def import_all_models() -> None:
    """Import every module that defines tables so Base.metadata is complete."""
    import coldstore_kernel.services.sequence_service  # noqa: F401


__all__ = [
    "CostLayerModel",
    "CustomerModel",
    "FiscalPeriodModel",
    "InventoryBalanceModel",
    "InventoryItemModel",
    "InventoryTransactionModel",
    "TransactionCostLineModel",
    "import_all_models",
]
