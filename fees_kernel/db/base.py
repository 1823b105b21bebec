"""
Module: fees_kernel.db.base
Responsibility: Declarative base for the fees tables.
Architecture position: Kernel > DB.  Imported by every model; imports no
    other kernel module.

Conventions:
    - Primary keys are uuid4 values stored as String(36), so SQLite (tests)
      and PostgreSQL (production) hold identical values.
    - Decimal columns are Numeric(38, 9).  Amounts are rounded to the
      currency precision by the services, never by the column.
    - datetime columns are timezone-aware.  SQLite returns them naive;
      read paths pass them through ``as_utc``.
    - Unnamed foreign keys, primary keys and indexes get deterministic
      names; CHECK and UNIQUE constraints are always named by the model.
    - created_at / updated_at are row metadata set by the database.
      Business time (occurred_at, opened_at, resolved_at, frozen_at) is a
      separate column filled from the injected Clock.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, MetaData, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

NAMING_CONVENTION = {
    "pk": "pk_%(table_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "ix": "ix_%(table_name)s_%(column_0_name)s",
}


class UUIDString(TypeDecorator):
    """uuid.UUID in Python, String(36) in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TimestampedBase(Base):
    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False,
    )
