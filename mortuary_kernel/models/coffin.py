"""Coffin catalog and case assignments."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mortuary_kernel.db.base import TrackedBase, UUIDString
from mortuary_kernel.db.types import CurrencyCode, MoneyAmount, Rate
from mortuary_kernel.domain.types import CoffinLine


class Coffin(TrackedBase):
    """Priced catalog entry with on-hand stock."""

    __tablename__ = "coffins"

    custom_id: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    coffin_type: Mapped[str] = mapped_column(String(100), nullable=False)
    material: Mapped[str | None] = mapped_column(String(100), nullable=True)
    unit_price: Mapped[MoneyAmount] = mapped_column(nullable=False)
    currency: Mapped[CurrencyCode] = mapped_column(nullable=False, default="KES")
    fx_rate_kes_per_usd: Mapped[Rate | None] = mapped_column(nullable=True)
    stock_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CoffinAssignment(TrackedBase):
    """
    A coffin billed to a case.

    Price, currency and FX rate are copied from the catalog when the
    assignment is made, so later catalog edits never re-price a case.
    Only the active assignment contributes to billing.
    """

    __tablename__ = "coffin_assignments"

    __table_args__ = (
        Index("ix_coffin_assignments_case_active", "case_pk", "is_active"),
    )

    case_pk: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("deceased_cases.id"), nullable=False
    )
    coffin_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("coffins.id"), nullable=False
    )
    unit_price: Mapped[MoneyAmount] = mapped_column(nullable=False)
    currency: Mapped[CurrencyCode] = mapped_column(nullable=False)
    fx_rate_kes_per_usd: Mapped[Rate | None] = mapped_column(nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    assigned_at: Mapped[datetime] = mapped_column(nullable=False)
    assigned_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    superseded_at: Mapped[datetime | None] = mapped_column(nullable=True)

    coffin: Mapped[Coffin] = relationship(Coffin, foreign_keys=[coffin_id])

    def to_line(self) -> CoffinLine:
        return CoffinLine(
            line_id=str(self.id),
            unit_price=self.unit_price,
            currency=self.currency,
            quantity=self.quantity,
            fx_rate_kes_per_usd=self.fx_rate_kes_per_usd,
        )
