"""
Module: coldstore_kernel.models.transaction
Responsibility: ORM persistence for inventory transactions (the immutable audit
    record of each committed movement) and their FIFO cost breakdown lines.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - transaction_number is UNIQUE (``<PREFIX>-<YEAR>-<NNNN>``).
    - Once inserted, only the GL posting fields (is_posted_to_gl,
      gl_voucher_id, posted_at) may change; deletes are refused
      (ORM listener, db/immutability.py).
    - Cost breakdown lines are insert-only.

Audit relevance:
    The transaction row plus its breakdown lines explain every change to the
    Cost Layer Store and the Balance Ledger: which layers were drawn, at what
    unit cost, on whose request.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coldstore_kernel.db.base import Base, TrackedBase, UUIDString
from coldstore_kernel.domain.dtos import CostBreakdownEntry, InventoryTransactionRecord
from coldstore_kernel.domain.movements import ReferenceType, TransactionType

# Fields that the GL posting hand-off may set after the record is persisted
POSTING_FIELDS = frozenset({"is_posted_to_gl", "gl_voucher_id", "posted_at"})


class InventoryTransactionModel(TrackedBase):
    """Immutable record of one committed stock movement."""

    __tablename__ = "inventory_transactions"

    __table_args__ = (
        Index("idx_inv_txn_item_date", "item_id", "transaction_date"),
        Index("idx_inv_txn_warehouse", "warehouse_id"),
        Index("idx_inv_txn_type", "transaction_type"),
        Index("idx_inv_txn_reference", "reference_type", "reference_id"),
        Index("idx_inv_txn_gl_pending", "is_posted_to_gl"),
    )

    transaction_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    item_id: Mapped[str] = mapped_column(String(80), nullable=False)
    customer_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    warehouse_id: Mapped[str] = mapped_column(String(80), nullable=False)
    room_id: Mapped[str | None] = mapped_column(String(80), nullable=True)

    from_warehouse_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    from_room_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    to_warehouse_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    to_room_id: Mapped[str | None] = mapped_column(String(80), nullable=True)

    # Signed for Adjustment, positive otherwise
    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    unit_of_measure: Mapped[str] = mapped_column(String(20), nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    lot_number: Mapped[str | None] = mapped_column(String(80), nullable=True)
    batch_number: Mapped[str | None] = mapped_column(String(80), nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    manufacture_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    reference_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(80), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    fiscal_period_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(80), nullable=True)

    is_posted_to_gl: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    gl_voucher_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    cost_lines: Mapped[list[TransactionCostLineModel]] = relationship(
        back_populates="transaction",
        order_by="TransactionCostLineModel.line_number",
        lazy="selectin",
    )

    def to_record(self) -> InventoryTransactionRecord:
        return InventoryTransactionRecord(
            id=self.id,
            transaction_number=self.transaction_number,
            transaction_type=TransactionType(self.transaction_type),
            transaction_date=self.transaction_date,
            item_id=self.item_id,
            customer_id=self.customer_id,
            warehouse_id=self.warehouse_id,
            room_id=self.room_id,
            from_warehouse_id=self.from_warehouse_id,
            from_room_id=self.from_room_id,
            to_warehouse_id=self.to_warehouse_id,
            to_room_id=self.to_room_id,
            quantity=self.quantity,
            unit_of_measure=self.unit_of_measure,
            unit_cost=self.unit_cost,
            total_cost=self.total_cost,
            lot_number=self.lot_number,
            batch_number=self.batch_number,
            expiry_date=self.expiry_date,
            manufacture_date=self.manufacture_date,
            reference_type=ReferenceType(self.reference_type) if self.reference_type else None,
            reference_id=self.reference_id,
            reference_number=self.reference_number,
            notes=self.notes,
            fiscal_period_id=self.fiscal_period_id,
            created_by=self.created_by,
            created_at=self.created_at,
            is_posted_to_gl=self.is_posted_to_gl,
            gl_voucher_id=self.gl_voucher_id,
            posted_at=self.posted_at,
            cost_breakdown=tuple(line.to_entry() for line in self.cost_lines),
        )

    def __repr__(self) -> str:
        return (
            f"<InventoryTransaction {self.transaction_number}: "
            f"{self.transaction_type} {self.quantity} of {self.item_id}>"
        )


class TransactionCostLineModel(Base):
    """One cost layer drawn by a transaction, in FIFO order."""

    __tablename__ = "inventory_transaction_cost_lines"

    __table_args__ = (
        Index("idx_inv_txn_line_txn", "transaction_id", "line_number"),
        Index("idx_inv_txn_line_layer", "layer_id"),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("inventory_transactions.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # Not a foreign key: consumed layers may later be swept by housekeeping
    layer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    quantity_used: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    line_cost: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    receipt_date: Mapped[date] = mapped_column(Date, nullable=False)
    lot_number: Mapped[str | None] = mapped_column(String(80), nullable=True)

    transaction: Mapped[InventoryTransactionModel] = relationship(
        back_populates="cost_lines"
    )

    def to_entry(self) -> CostBreakdownEntry:
        return CostBreakdownEntry(
            layer_id=self.layer_id,
            quantity_used=self.quantity_used,
            unit_cost=self.unit_cost,
            line_cost=self.line_cost,
            receipt_date=self.receipt_date,
            lot_number=self.lot_number,
        )
