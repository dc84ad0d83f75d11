"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Inventory transactions are the audit trail behind every balance and every
cost layer.  Once a movement is committed its record must never change, other
than the GL posting hand-off stamping it as posted.  Likewise a cost layer's
unit cost and receipt date define its FIFO age and value: if either could
change after receipt, historical issue costs would no longer be explainable.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
The listeners below intercept these events and raise
ImmutabilityViolationError, aborting the flush before any SQL is sent.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                      | What is frozen                     | Allowed changes
----------------------------|------------------------------------|--------------------------
InventoryTransaction        | Every field, from creation         | GL posting fields
TransactionCostLine         | Every field, from creation         | none
CostLayer                   | unit_cost, receipt_date, sequence, | remaining / original qty,
                            | stock key columns                  | is_fully_consumed
CostLayer (DELETE)          | Active layers                      | Fully consumed layers
                            |                                    | (housekeeping sweep)

updated_at is row metadata and may always change.

===============================================================================
USAGE
===============================================================================

    from coldstore_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY - e.g. to seed a corrupted layer for the
integrity sweep):

    unregister_immutability_listeners()
"""

from decimal import Decimal

from sqlalchemy import event, inspect

from coldstore_kernel.exceptions import ImmutabilityViolationError
from coldstore_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_METADATA_FIELDS = frozenset({"updated_at"})

FROZEN_LAYER_FIELDS = frozenset({
    "unit_cost",
    "receipt_date",
    "sequence",
    "stock_key",
    "item_id",
    "customer_id",
    "warehouse_id",
    "room_id",
    "lot_number",
    "receipt_reference",
    "receipt_transaction_id",
})


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.mapper.column_attrs
        if attr.key not in _METADATA_FIELDS
        and insp.attrs[attr.key].history.has_changes()
    ]


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_transaction_immutability(mapper, connection, target):
    """Only the GL posting fields of a persisted transaction may change."""
    from coldstore_kernel.models.transaction import POSTING_FIELDS

    for field in _changed_fields(target):
        if field not in POSTING_FIELDS:
            _block(
                "InventoryTransaction",
                target,
                "UPDATE",
                f"Cannot modify field '{field}' on a committed inventory transaction",
                field,
            )


def _check_transaction_delete(mapper, connection, target):
    _block(
        "InventoryTransaction",
        target,
        "DELETE",
        "Inventory transactions cannot be deleted",
    )


def _check_cost_line_immutability(mapper, connection, target):
    _block(
        "TransactionCostLine",
        target,
        "UPDATE",
        "Transaction cost lines are immutable",
    )


def _check_cost_line_delete(mapper, connection, target):
    _block(
        "TransactionCostLine",
        target,
        "DELETE",
        "Transaction cost lines cannot be deleted",
    )


def _check_cost_layer_immutability(mapper, connection, target):
    """Cost and FIFO identity of a layer are frozen; quantities are not."""
    for field in _changed_fields(target):
        if field in FROZEN_LAYER_FIELDS:
            _block(
                "CostLayer",
                target,
                "UPDATE",
                f"Cannot modify field '{field}' on a cost layer",
                field,
            )


def _check_cost_layer_delete(mapper, connection, target):
    """Only fully consumed, empty layers may be swept."""
    if not target.is_fully_consumed or target.remaining_quantity != Decimal("0"):
        _block(
            "CostLayer",
            target,
            "DELETE",
            "Only fully consumed cost layers can be deleted",
        )


_LISTENERS = (
    ("transaction", "before_update", _check_transaction_immutability),
    ("transaction", "before_delete", _check_transaction_delete),
    ("cost_line", "before_update", _check_cost_line_immutability),
    ("cost_line", "before_delete", _check_cost_line_delete),
    ("cost_layer", "before_update", _check_cost_layer_immutability),
    ("cost_layer", "before_delete", _check_cost_layer_delete),
)


def _targets() -> dict:
    from coldstore_kernel.models.cost_layer import CostLayerModel
    from coldstore_kernel.models.transaction import (
        InventoryTransactionModel,
        TransactionCostLineModel,
    )

    return {
        "transaction": InventoryTransactionModel,
        "cost_line": TransactionCostLineModel,
        "cost_layer": CostLayerModel,
    }


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call after all models are imported and before any database operations.
    Idempotent.
    """
    targets = _targets()
    for name, event_name, listener_fn in _LISTENERS:
        if not event.contains(targets[name], event_name, listener_fn):
            event.listen(targets[name], event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate immutability.
    """
    targets = _targets()
    for name, event_name, listener_fn in _LISTENERS:
        if event.contains(targets[name], event_name, listener_fn):
            event.remove(targets[name], event_name, listener_fn)
