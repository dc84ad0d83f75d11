"""
coldstore_services -- Package init and public API.

Responsibility:
    Stateful services that compose the pure engines (coldstore_engines/)
    with database sessions: the Cost Layer Store, the Balance Ledger, the
    Transaction Processor and its movement handlers, the integrity sweep
    and the GL posting hand-off.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        coldstore_services/ -> coldstore_engines/  (allowed)
        coldstore_services/ -> coldstore_kernel/   (allowed)
        coldstore_engines/  -> coldstore_services/ (FORBIDDEN)
        coldstore_kernel/   -> coldstore_services/ (FORBIDDEN)

Invariants enforced:
    - Only the TransactionProcessor commits on the movement path.  The
      store and ledger flush but never commit.
"""

from coldstore_services.balance_ledger import BalanceLedger
from coldstore_services.cost_layer_store import CostLayerStore
from coldstore_services.integrity_service import IntegrityService
from coldstore_services.movement_handlers import (
    MovementContext,
    MovementHandler,
    MovementHandlerRegistry,
    MovementOutcome,
    ProcessingStage,
    default_registry,
)
from coldstore_services.posting_handoff import PostingHandoff
from coldstore_services.reference_data import (
    CustomerDirectory,
    FiscalPeriodResolver,
    ItemCatalog,
    ItemInfo,
    SqlCustomerDirectory,
    SqlFiscalPeriodResolver,
    SqlItemCatalog,
)
from coldstore_services.transaction_processor import (
    PostingBridge,
    TransactionProcessor,
    default_lock_manager,
)

__all__ = [
    "BalanceLedger",
    "CostLayerStore",
    "CustomerDirectory",
    "FiscalPeriodResolver",
    "IntegrityService",
    "ItemCatalog",
    "ItemInfo",
    "MovementContext",
    "MovementHandler",
    "MovementHandlerRegistry",
    "MovementOutcome",
    "PostingBridge",
    "PostingHandoff",
    "ProcessingStage",
    "SqlCustomerDirectory",
    "SqlFiscalPeriodResolver",
    "SqlItemCatalog",
    "TransactionProcessor",
    "default_lock_manager",
    "default_registry",
]
