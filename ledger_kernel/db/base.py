"""
Module: ledger_kernel.db.base
Responsibility: Declarative base classes for every ORM model in the ledger.
    Fixes the primary key convention (uuid4 stored as String(36)), the Python
    type -> column type map, and the TrackedBase audit columns.
Architecture position: Kernel > DB.  Lowest import target in the kernel; it
    MUST NOT import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - Money is Decimal mapped to Numeric(38, 9).  Floats never reach a
      balance column.
    - Timestamps are timezone-aware DateTime columns.
    - Every row has a uuid4 primary key.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as its 36-character string form (portable across SQLite and PostgreSQL)."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all ledger models.

    Guarantees:
        - ``id`` is a uuid4 UUID.
        - ``Decimal`` annotations map to Numeric(38, 9).
        - ``datetime`` annotations map to DateTime(timezone=True).
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TrackedBase(Base):
    """
    Abstract base adding who/when audit columns.

    ``created_by_id`` is nullable because the settlement scheduler writes
    rows on behalf of the system, not of a user.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    created_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    updated_by_id: Mapped[PyUUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )


UUID = PyUUID
