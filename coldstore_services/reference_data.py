"""
coldstore_services.reference_data -- collaborator interfaces consumed by the
Transaction Processor, with SQL-backed implementations.

Responsibility:
    The processor depends only on three narrow protocols: an item catalog,
    a customer directory and a fiscal period resolver.  The SQL
    implementations read the minimal reference tables through the
    processor's own session, so the Receipt last-cost update commits or
    rolls back with the movement.

Failure modes:
    - Lookups return None / False on absence; turning that into
      ItemNotFoundError or CustomerNotFoundError is the processor's job.
    - A date not covered by any fiscal period resolves to None, which is
      not an error.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from coldstore_kernel.logging_config import get_logger
from coldstore_kernel.models.reference import (
    CustomerModel,
    FiscalPeriodModel,
    InventoryItemModel,
)

logger = get_logger("services.reference_data")


@dataclass(frozen=True, slots=True)
class ItemInfo:
    """What the processor needs to know about an item."""

    item_id: str
    unit_of_measure: str
    is_perishable: bool
    standard_cost: Decimal
    is_active: bool = True


@runtime_checkable
class ItemCatalog(Protocol):
    def get_item(self, item_id: str) -> ItemInfo | None: ...

    def record_last_cost(self, item_id: str, unit_cost: Decimal) -> None: ...


@runtime_checkable
class CustomerDirectory(Protocol):
    def exists(self, customer_id: str) -> bool: ...


@runtime_checkable
class FiscalPeriodResolver(Protocol):
    def resolve(self, on: date) -> str | None: ...


def _as_uuid(value: str) -> UUID | None:
    try:
        return UUID(str(value))
    except ValueError:
        return None


class SqlItemCatalog:
    """Item catalog over the ``inventory_items`` table."""

    def __init__(self, session: Session):
        self._session = session

    def _row(self, item_id: str) -> InventoryItemModel | None:
        pk = _as_uuid(item_id)
        if pk is None:
            return None
        return self._session.get(InventoryItemModel, pk)

    def get_item(self, item_id: str) -> ItemInfo | None:
        row = self._row(item_id)
        if row is None:
            return None
        return ItemInfo(
            item_id=str(row.id),
            unit_of_measure=row.unit_of_measure,
            is_perishable=row.is_perishable,
            standard_cost=row.standard_cost,
            is_active=row.is_active,
        )

    def record_last_cost(self, item_id: str, unit_cost: Decimal) -> None:
        row = self._row(item_id)
        if row is None:
            return
        row.last_cost = unit_cost
        logger.debug(
            "item_last_cost_updated",
            extra={"item_id": item_id, "last_cost": str(unit_cost)},
        )


class SqlCustomerDirectory:
    """Customer existence over the ``customers`` table."""

    def __init__(self, session: Session):
        self._session = session

    def exists(self, customer_id: str) -> bool:
        pk = _as_uuid(customer_id)
        if pk is None:
            return False
        return self._session.get(CustomerModel, pk) is not None


class SqlFiscalPeriodResolver:
    """Maps a date to the id of the fiscal period whose range covers it."""

    def __init__(self, session: Session):
        self._session = session

    def resolve(self, on: date) -> str | None:
        period_id = self._session.execute(
            select(FiscalPeriodModel.id)
            .where(
                FiscalPeriodModel.start_date <= on,
                FiscalPeriodModel.end_date >= on,
            )
            .order_by(FiscalPeriodModel.start_date.desc())
            .limit(1)
        ).scalar_one_or_none()
        if period_id is None:
            logger.info("fiscal_period_not_found", extra={"date": on})
            return None
        return str(period_id)
