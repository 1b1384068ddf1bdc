"""
DeceasedCase -- the billable subject.

``total_charge``, ``balance`` and ``last_charge_update`` are written only by
the reconciliation service.  Everything else is set at intake or by staff.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from mortuary_kernel.db.base import TrackedBase
from mortuary_kernel.db.types import CurrencyCode, MoneyAmount, Rate
from mortuary_kernel.domain.types import CaseStatus, CaseTerms


class DeceasedCase(TrackedBase):
    __tablename__ = "deceased_cases"

    __table_args__ = (Index("ix_deceased_cases_status", "status"),)

    case_id: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    rate_category: Mapped[str | None] = mapped_column(String(20), nullable=True)
    currency: Mapped[CurrencyCode] = mapped_column(nullable=False, default="KES")
    daily_rate_usd: Mapped[MoneyAmount | None] = mapped_column(nullable=True)
    fx_rate_kes_per_usd: Mapped[Rate | None] = mapped_column(nullable=True)
    admitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_charge_update: Mapped[datetime | None] = mapped_column(nullable=True)
    total_charge: Mapped[MoneyAmount] = mapped_column(
        nullable=False, default=Decimal("0")
    )
    balance: Mapped[MoneyAmount] = mapped_column(nullable=False, default=Decimal("0"))
    embalming_cost: Mapped[MoneyAmount | None] = mapped_column(nullable=True)
    # NULL is treated as an open case, same as any non-terminal status.
    status: Mapped[str | None] = mapped_column(
        String(30), nullable=True, default=CaseStatus.ADMITTED.value
    )
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def accrual_start(self) -> datetime:
        """Admission time, or creation time for rows intake never dated."""
        return self.admitted_at or self.created_at

    @property
    def is_closed(self) -> bool:
        return (self.status or "").strip().lower() == CaseStatus.COMPLETE.value

    def to_terms(self) -> CaseTerms:
        return CaseTerms(
            case_id=self.case_id,
            currency=self.currency,
            rate_category=self.rate_category,
            admitted_at=self.accrual_start,
            last_charge_update=self.last_charge_update,
            daily_rate_usd=self.daily_rate_usd,
            fx_rate_kes_per_usd=self.fx_rate_kes_per_usd,
            embalming_cost=self.embalming_cost,
        )

    def __repr__(self) -> str:
        return f"<DeceasedCase {self.case_id} {self.status} balance={self.balance}>"
