"""
SequenceService -- counters for layer ordering and transaction numbers.

Two kinds of counter live in ``sequence_counters``:

* ``cost_layer``: one global creation order.  FIFO breaks receipt-date
  ties on it, so two layers received the same day are consumed in the order
  they were created, independent of clock resolution or UUID order.
* ``txn:<PREFIX>:<YEAR>``: per movement type and year, formatted as
  ``RCP-2025-0001``.

A counter row is locked (``SELECT ... FOR UPDATE``) for the rest of the
caller's transaction, so allocation is gap-free: a rolled-back movement
gives its number back.  Nothing here commits.
"""

from sqlalchemy import BigInteger, Select, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from coldstore_kernel.db.base import Base
from coldstore_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


def _locked(name: str) -> Select:
    return (
        select(SequenceCounter)
        .where(SequenceCounter.name == name)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


class SequenceService:
    """Allocates the next value of a named counter inside the caller's transaction."""

    COST_LAYER = "cost_layer"

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def transaction_sequence_name(prefix: str, year: int) -> str:
        return f"txn:{prefix}:{year}"

    def next_value(self, sequence_name: str) -> int:
        counter = self._session.execute(_locked(sequence_name)).scalar_one_or_none()
        if counter is None:
            counter = self._first_use(sequence_name)
        else:
            counter.current_value += 1
            self._session.flush()

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def _first_use(self, sequence_name: str) -> SequenceCounter:
        # A concurrent first use may insert the same name; the savepoint
        # confines the unique violation so the movement can carry on.
        savepoint = self._session.begin_nested()
        try:
            counter = SequenceCounter(name=sequence_name, current_value=1)
            self._session.add(counter)
            self._session.flush()
            savepoint.commit()
            return counter
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race", extra={"sequence_name": sequence_name})

        counter = self._session.execute(_locked(sequence_name)).scalar_one()
        counter.current_value += 1
        self._session.flush()
        return counter

    def next_transaction_number(self, prefix: str, year: int, width: int = 4) -> str:
        """``<PREFIX>-<YEAR>-<N>`` zero-padded to ``width``; restarts every year."""
        value = self.next_value(self.transaction_sequence_name(prefix, year))
        return f"{prefix}-{year}-{value:0{width}d}"

    def current_value(self, sequence_name: str) -> int | None:
        """Last value handed out, or None for an unused counter."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
