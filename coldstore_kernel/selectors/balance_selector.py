"""
Module: coldstore_kernel.selectors.balance_selector
Responsibility: Read-only access to Balance rows filtered by stock-key
    components.  This is the balance query surface callers depend on.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Read-only; returns BalanceInfo DTOs.
    - ``only_with_stock`` defaults to True (quantity_on_hand > 0).
    - A stock key without a row reads as an all-zero balance, never None.
"""

from decimal import Decimal

from sqlalchemy import select

from coldstore_kernel.domain.dtos import BalanceInfo
from coldstore_kernel.domain.stock_key import StockKey
from coldstore_kernel.models.balance import InventoryBalanceModel
from coldstore_kernel.selectors.base import BaseSelector


class BalanceSelector(BaseSelector):
    """Query balances by stock key or by any subset of its components."""

    def get_balance(self, key: StockKey) -> BalanceInfo:
        row = self.session.execute(
            select(InventoryBalanceModel).where(
                InventoryBalanceModel.stock_key == key.canonical
            )
        ).scalar_one_or_none()
        if row is None:
            return BalanceInfo.empty(key)
        return row.to_info()

    def list_balances(
        self,
        *,
        item_id: str | None = None,
        customer_id: str | None = None,
        warehouse_id: str | None = None,
        room_id: str | None = None,
        lot_number: str | None = None,
        only_with_stock: bool = True,
        min_quantity: Decimal | None = None,
    ) -> list[BalanceInfo]:
        """
        Filtered balances, highest total value first.

        A filter left as None is not applied; it does not match NULL columns.
        """
        stmt = select(InventoryBalanceModel)
        filters = {
            "item_id": item_id,
            "customer_id": customer_id,
            "warehouse_id": warehouse_id,
            "room_id": room_id,
            "lot_number": lot_number,
        }
        for column, value in filters.items():
            if value is not None:
                stmt = stmt.where(getattr(InventoryBalanceModel, column) == value)
        if only_with_stock:
            stmt = stmt.where(InventoryBalanceModel.quantity_on_hand > 0)
        if min_quantity is not None:
            stmt = stmt.where(InventoryBalanceModel.quantity_on_hand >= min_quantity)
        stmt = stmt.order_by(
            InventoryBalanceModel.total_value.desc(),
            InventoryBalanceModel.stock_key,
        )
        return [row.to_info() for row in self.session.execute(stmt).scalars()]

    def total_on_hand(self, item_id: str, warehouse_id: str | None = None) -> Decimal:
        """On-hand quantity of an item summed across its stock keys."""
        return sum(
            (
                b.quantity_on_hand
                for b in self.list_balances(item_id=item_id, warehouse_id=warehouse_id)
            ),
            Decimal("0"),
        )
