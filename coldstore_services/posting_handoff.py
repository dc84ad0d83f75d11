"""
coldstore_services.posting_handoff -- record the general ledger outcome of a movement.

Responsibility:
    After the posting bridge has turned a committed inventory transaction
    into a GL voucher, ``mark_posted_to_gl`` stamps the transaction with
    the voucher id and posting time.  These are the only fields of a
    transaction that may change after it is persisted.

Failure modes:
    - TransactionNotFoundError: unknown transaction id.
    - AlreadyPostedError: the transaction already carries a voucher.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from coldstore_kernel.domain.clock import Clock
from coldstore_kernel.domain.dtos import InventoryTransactionRecord
from coldstore_kernel.exceptions import AlreadyPostedError, TransactionNotFoundError
from coldstore_kernel.logging_config import get_logger
from coldstore_kernel.models.transaction import InventoryTransactionModel

logger = get_logger("services.posting_handoff")


class PostingHandoff:
    """GL posting status of inventory transactions."""

    def __init__(self, session: Session, clock: Clock):
        self._session = session
        self._clock = clock

    def mark_posted_to_gl(
        self,
        transaction_id: UUID,
        voucher_id: str,
    ) -> InventoryTransactionRecord:
        """Stamp ``transaction_id`` as posted under ``voucher_id``; commits."""
        try:
            row = self._session.execute(
                select(InventoryTransactionModel)
                .where(InventoryTransactionModel.id == transaction_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if row is None:
                raise TransactionNotFoundError(str(transaction_id))
            if row.is_posted_to_gl:
                logger.warning(
                    "gl_posting_duplicate",
                    extra={
                        "transaction_number": row.transaction_number,
                        "gl_voucher_id": row.gl_voucher_id,
                    },
                )
                raise AlreadyPostedError(str(transaction_id), row.gl_voucher_id)

            now = self._clock.now()
            row.is_posted_to_gl = True
            row.gl_voucher_id = voucher_id
            row.posted_at = now
            row.updated_at = now
            self._session.flush()
            record = row.to_record()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "gl_posting_recorded",
            extra={
                "transaction_number": record.transaction_number,
                "gl_voucher_id": voucher_id,
            },
        )
        return record

    def pending(self, limit: int = 100) -> list[InventoryTransactionRecord]:
        """Committed transactions not yet posted, oldest first."""
        rows = self._session.execute(
            select(InventoryTransactionModel)
            .where(InventoryTransactionModel.is_posted_to_gl.is_(False))
            .order_by(InventoryTransactionModel.created_at, InventoryTransactionModel.transaction_number)
            .limit(limit)
        ).scalars()
        return [row.to_record() for row in rows]
