"""ChargeHistoryEntry -- append-only record of accrued charges."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from mortuary_kernel.db.base import TrackedBase, UUIDString
from mortuary_kernel.db.types import CurrencyCode, MoneyAmount


class ChargeHistoryEntry(TrackedBase):
    __tablename__ = "charge_history"

    __table_args__ = (Index("ix_charge_history_case_recorded", "case_pk", "recorded_at"),)

    case_pk: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("deceased_cases.id"), nullable=False
    )
    # External case id, kept so the trail reads without a join
    case_ref: Mapped[str] = mapped_column(String(50), nullable=False)
    charge_type: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[MoneyAmount] = mapped_column(nullable=False)
    currency: Mapped[CurrencyCode] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)
