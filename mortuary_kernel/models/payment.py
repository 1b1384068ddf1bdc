"""Payment -- money received against a case. Append-only."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from mortuary_kernel.db.base import TrackedBase, UUIDString
from mortuary_kernel.db.types import MoneyAmount
from mortuary_kernel.domain.types import PaymentLine


class Payment(TrackedBase):
    __tablename__ = "payments"

    __table_args__ = (Index("ix_payments_case", "case_pk"),)

    case_pk: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("deceased_cases.id"), nullable=False
    )
    amount: Mapped[MoneyAmount] = mapped_column(nullable=False)
    method: Mapped[str] = mapped_column(String(50), nullable=False)
    reference_code: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    payment_date: Mapped[datetime] = mapped_column(nullable=False)

    def to_line(self) -> PaymentLine:
        return PaymentLine(line_id=str(self.id), amount=self.amount)
