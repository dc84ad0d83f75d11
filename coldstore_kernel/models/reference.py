"""
Module: coldstore_kernel.models.reference
Responsibility: Minimal reference tables read by the Transaction Processor:
    inventory items, customers and fiscal periods.  Full master-data CRUD
    lives elsewhere; these rows exist so that item lookup, customer
    existence, fiscal period resolution and the item last-cost update share
    the movement's unit of work.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Date, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from coldstore_kernel.db.base import TrackedBase


class InventoryItemModel(TrackedBase):
    """Stock item master: unit of measure, perishability and standard cost."""

    __tablename__ = "inventory_items"

    __table_args__ = (
        CheckConstraint("standard_cost >= 0", name="ck_item_standard_cost_non_negative"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit_of_measure: Mapped[str] = mapped_column(String(20), nullable=False)
    is_perishable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    shelf_life_days: Mapped[int | None] = mapped_column(nullable=True)
    standard_cost: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=Decimal("0")
    )
    # Updated by every Receipt
    last_cost: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<InventoryItem {self.code}: {self.name} ({self.unit_of_measure})>"


class CustomerModel(TrackedBase):
    """Storage customer owning stock in the warehouse."""

    __tablename__ = "customers"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class FiscalPeriodModel(TrackedBase):
    """Accounting period; movements are stamped with the period covering their date."""

    __tablename__ = "fiscal_periods"

    __table_args__ = (
        Index("idx_fiscal_period_range", "start_date", "end_date"),
        CheckConstraint("end_date >= start_date", name="ck_fiscal_period_range"),
    )

    code: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
