"""
Module: coldstore_kernel.models.cost_layer
Responsibility: ORM persistence for FIFO cost layers.  Each layer is a quantity
    of one stock key received on one date at one unit cost.  Layers are the
    source of truth for FIFO order and for how much of each receipt remains.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - original_quantity > 0 and unit_cost >= 0 (CHECK constraints).
    - 0 <= remaining_quantity (CHECK); remaining_quantity <= original_quantity
      is maintained by the store and verified by the integrity sweep.
    - is_fully_consumed == (remaining_quantity == 0), maintained by
      ``apply_consumption`` / ``apply_replenishment``.
    - unit_cost, receipt_date, sequence and the stock key never change after
      INSERT (ORM listener, db/immutability.py).
    - (stock_key, receipt_date, sequence) index backs the FIFO scan.

Failure modes:
    - IntegrityError on CHECK violations or a duplicate sequence.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from coldstore_kernel.db.base import TrackedBase, UUIDString
from coldstore_kernel.domain.dtos import CostLayerInfo
from coldstore_kernel.domain.stock_key import StockKey

ZERO = Decimal("0")


class CostLayerModel(TrackedBase):
    """
    One FIFO cost layer.

    Contract:
        Created by Receipt, positive Adjustment and Transfer-in (when no
        matching destination layer exists).  Decremented by Issue, Transfer-out
        and negative Adjustment.  Deleted only by the housekeeping sweep once
        fully consumed and past retention.

    Guarantees:
        - ``sequence`` is a strictly increasing creation counter; it breaks
          ties between layers sharing a receipt date.
        - Stock key columns are denormalised next to the canonical
          ``stock_key`` string so valuation and integrity queries can filter
          on single components.
    """

    __tablename__ = "inventory_cost_layers"

    __table_args__ = (
        # Query: FIFO scan of one stock key
        Index("idx_cost_layer_fifo", "stock_key", "receipt_date", "sequence"),
        # Query: transfer merge target lookup
        Index(
            "idx_cost_layer_merge",
            "stock_key",
            "receipt_date",
            "unit_cost",
        ),
        # Query: valuation / integrity by item
        Index("idx_cost_layer_item", "item_id", "warehouse_id"),
        # Query: housekeeping sweep
        Index("idx_cost_layer_consumed", "is_fully_consumed", "updated_at"),
        CheckConstraint("original_quantity > 0", name="ck_cost_layer_original_positive"),
        CheckConstraint("remaining_quantity >= 0", name="ck_cost_layer_remaining_non_negative"),
        CheckConstraint("unit_cost >= 0", name="ck_cost_layer_unit_cost_non_negative"),
    )

    stock_key: Mapped[str] = mapped_column(String(420), nullable=False)

    item_id: Mapped[str] = mapped_column(String(80), nullable=False)
    customer_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    warehouse_id: Mapped[str] = mapped_column(String(80), nullable=False)
    room_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    lot_number: Mapped[str | None] = mapped_column(String(80), nullable=True)

    # Tie-break for equal receipt dates
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # FIFO age; preserved across transfers
    receipt_date: Mapped[date] = mapped_column(Date, nullable=False)

    receipt_reference: Mapped[str | None] = mapped_column(String(120), nullable=True)
    receipt_transaction_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True
    )

    original_quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    remaining_quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    is_fully_consumed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    @property
    def key(self) -> StockKey:
        return StockKey.parse(self.stock_key)

    @property
    def is_active(self) -> bool:
        return self.remaining_quantity > ZERO and not self.is_fully_consumed

    def apply_consumption(self, quantity: Decimal) -> None:
        """Decrement remaining; clamp at zero and mark fully consumed."""
        remaining = self.remaining_quantity - quantity
        if remaining <= ZERO:
            self.remaining_quantity = ZERO
            self.is_fully_consumed = True
        else:
            self.remaining_quantity = remaining

    def apply_replenishment(self, quantity: Decimal) -> None:
        """Merge a transferred-in quantity into this layer."""
        self.remaining_quantity = self.remaining_quantity + quantity
        self.original_quantity = self.original_quantity + quantity
        self.is_fully_consumed = False

    def to_info(self) -> CostLayerInfo:
        return CostLayerInfo(
            id=self.id,
            stock_key=self.key,
            sequence=self.sequence,
            receipt_date=self.receipt_date,
            original_quantity=self.original_quantity,
            remaining_quantity=self.remaining_quantity,
            unit_cost=self.unit_cost,
            is_fully_consumed=self.is_fully_consumed,
            receipt_reference=self.receipt_reference,
            receipt_transaction_id=self.receipt_transaction_id,
        )

    def __repr__(self) -> str:
        return (
            f"<CostLayer {self.id}: {self.stock_key} seq={self.sequence} "
            f"{self.remaining_quantity}/{self.original_quantity} @ {self.unit_cost}>"
        )
