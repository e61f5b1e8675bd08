"""
ORM base classes (``backoffice_kernel.db.base``).

Every table in the back office -- jobs, invoices, recurring schedules and
their history -- derives from ``TrackedBase``.  This module is the bottom
of the import graph: it must not import from ``backoffice_modules`` or
``recurring_engine``.

Column conventions
------------------
* ``id``: uuid4, stored as a 36-char string so SQLite and PostgreSQL
  agree on the representation.
* Money (``Decimal``): ``Numeric(18, 4)``.  Never ``float``.
* Occurrence and due dates (``date``): ``Date``, no time-of-day.
* Instants (``datetime``): timezone-aware ``DateTime``.
* Audit: ``created_at``/``updated_at`` set by the database,
  ``created_by_id`` required, ``updated_by_id`` set by guarded updates.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import Date, DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

MONEY = Numeric(18, 4)


class UUIDString(TypeDecorator):
    """UUID <-> ``String(36)``.  Accepts a UUID or its string form on bind."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value if isinstance(value, UUID) else UUID(str(value)))

    def process_result_value(self, value, dialect):
        return UUID(value) if value is not None else None


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        Decimal: MONEY,
        date: Date,
        datetime: DateTime(timezone=True),
        int: Integer,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Adds who/when audit columns.  Abstract: no table of its own."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[UUID] = mapped_column(nullable=False)
    updated_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
