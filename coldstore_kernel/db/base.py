"""
Declarative base for the inventory tables.

Every row has a uuid4 primary key stored as String(36) so the schema is the
same on PostgreSQL and SQLite.  Quantities, costs and values are Decimal
mapped to Numeric(38, 9); float never reaches a column.  ``TrackedBase``
adds ``created_at`` / ``updated_at``: services set both from their Clock,
the server default only covers rows written by hand.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """uuid.UUID in Python, 36-character text in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        # receipt and movement dates have no time part
        date: Date(),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """``updated_at`` is bookkeeping; the immutability listeners ignore it."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


UUID = PyUUID
