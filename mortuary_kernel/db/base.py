"""
Declarative base for every billing table.

Column conventions live here so that models only declare Python types:
Decimal becomes Numeric(38, 9), datetimes are timezone-aware, ints are
BIGINT, and every primary key is a uuid4 stored as 36 characters so the
same schema runs on PostgreSQL and SQLite.  Nothing in this module may
import models, services or selectors.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from mortuary_kernel.db.types import CurrencyCode, MoneyAmount, Rate


class UUIDString(TypeDecorator):
    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        MoneyAmount: Numeric(38, 9),
        Rate: Numeric(38, 18),
        CurrencyCode: String(3),
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Adds who/when columns.

    ``updated_at`` and ``updated_by_id`` are bookkeeping, so they may change
    even on rows whose billing columns are immutable.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
