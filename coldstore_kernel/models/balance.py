"""
Module: coldstore_kernel.models.balance
Responsibility: ORM persistence for per-stock-key inventory balances: on-hand,
    reserved and available quantity plus the weighted-average valuation.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Exactly one row per stock key (UNIQUE on the canonical ``stock_key``
      string, which sidesteps NULL-never-equal semantics of nullable
      customer / room / lot columns).
    - quantity_on_hand >= 0 and quantity_reserved >= 0 (CHECK constraints).
    - quantity_available == quantity_on_hand - quantity_reserved, recomputed
      on every write through ``recompute_available``.
    - Rows are created lazily on first movement and never deleted.

Failure modes:
    - IntegrityError on a concurrent first insert for the same stock key
      (handled by the Balance Ledger with a savepoint retry).
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from coldstore_kernel.db.base import TrackedBase
from coldstore_kernel.domain.dtos import BalanceInfo
from coldstore_kernel.domain.movements import TransactionType
from coldstore_kernel.domain.stock_key import StockKey

ZERO = Decimal("0")


class InventoryBalanceModel(TrackedBase):
    """
    Derived stock position of one stock key.

    Contract:
        ``quantity_on_hand`` is mutated only by the Balance Ledger's
        ``apply_movement``.  Reservations touch ``quantity_reserved`` only.
    """

    __tablename__ = "inventory_balances"

    __table_args__ = (
        Index("idx_balance_item_warehouse", "item_id", "warehouse_id"),
        Index("idx_balance_customer", "customer_id"),
        CheckConstraint("quantity_on_hand >= 0", name="ck_balance_on_hand_non_negative"),
        CheckConstraint("quantity_reserved >= 0", name="ck_balance_reserved_non_negative"),
    )

    stock_key: Mapped[str] = mapped_column(String(420), nullable=False, unique=True)

    item_id: Mapped[str] = mapped_column(String(80), nullable=False)
    customer_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    warehouse_id: Mapped[str] = mapped_column(String(80), nullable=False)
    room_id: Mapped[str | None] = mapped_column(String(80), nullable=True)
    lot_number: Mapped[str | None] = mapped_column(String(80), nullable=True)

    quantity_on_hand: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=ZERO
    )
    quantity_reserved: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=ZERO
    )
    quantity_available: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=ZERO
    )

    weighted_average_cost: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=ZERO
    )
    total_value: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=ZERO
    )

    last_movement_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_movement_type: Mapped[str | None] = mapped_column(String(20), nullable=True)

    @classmethod
    def zeroed(cls, key: StockKey) -> InventoryBalanceModel:
        return cls(
            stock_key=key.canonical,
            item_id=key.item_id,
            customer_id=key.customer_id,
            warehouse_id=key.warehouse_id,
            room_id=key.room_id,
            lot_number=key.lot_number,
            quantity_on_hand=ZERO,
            quantity_reserved=ZERO,
            quantity_available=ZERO,
            weighted_average_cost=ZERO,
            total_value=ZERO,
        )

    @property
    def key(self) -> StockKey:
        return StockKey.parse(self.stock_key)

    def recompute_available(self) -> None:
        self.quantity_available = self.quantity_on_hand - self.quantity_reserved

    def to_info(self) -> BalanceInfo:
        return BalanceInfo(
            stock_key=self.key,
            quantity_on_hand=self.quantity_on_hand,
            quantity_reserved=self.quantity_reserved,
            quantity_available=self.quantity_available,
            weighted_average_cost=self.weighted_average_cost,
            total_value=self.total_value,
            last_movement_date=self.last_movement_date,
            last_movement_type=(
                TransactionType(self.last_movement_type)
                if self.last_movement_type
                else None
            ),
        )

    def __repr__(self) -> str:
        return (
            f"<InventoryBalance {self.stock_key}: on_hand={self.quantity_on_hand} "
            f"reserved={self.quantity_reserved} wac={self.weighted_average_cost}>"
        )
