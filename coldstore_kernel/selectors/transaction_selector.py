"""
Module: coldstore_kernel.selectors.transaction_selector
Responsibility: Read-only lookup of committed inventory transactions by id or
    transaction number, returned as immutable records with their FIFO cost
    breakdown.
Architecture position: Kernel > Selectors.

Failure modes:
    - Returns None when no transaction matches (never raises on absence).
"""

from uuid import UUID

from sqlalchemy import select

from coldstore_kernel.domain.dtos import InventoryTransactionRecord
from coldstore_kernel.models.transaction import InventoryTransactionModel
from coldstore_kernel.selectors.base import BaseSelector


class TransactionSelector(BaseSelector):

    def get(self, transaction_id: UUID) -> InventoryTransactionRecord | None:
        row = self.session.get(InventoryTransactionModel, transaction_id)
        return row.to_record() if row is not None else None

    def get_by_number(self, transaction_number: str) -> InventoryTransactionRecord | None:
        row = self.session.execute(
            select(InventoryTransactionModel).where(
                InventoryTransactionModel.transaction_number == transaction_number
            )
        ).scalar_one_or_none()
        return row.to_record() if row is not None else None

    def list_for_reference(
        self, reference_type: str, reference_id: str
    ) -> list[InventoryTransactionRecord]:
        """Every movement raised by one source document, oldest number first."""
        reference_type = getattr(reference_type, "value", reference_type)
        rows = self.session.execute(
            select(InventoryTransactionModel)
            .where(
                InventoryTransactionModel.reference_type == reference_type,
                InventoryTransactionModel.reference_id == reference_id,
            )
            .order_by(InventoryTransactionModel.transaction_number)
        ).scalars()
        return [row.to_record() for row in rows]
