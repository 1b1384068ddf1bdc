"""ExtraCharge -- an ad hoc billable service line on a case."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mortuary_kernel.db.base import TrackedBase, UUIDString
from mortuary_kernel.db.types import MoneyAmount
from mortuary_kernel.domain.types import ExtraChargeLine, ExtraChargeStatus


class ExtraCharge(TrackedBase):
    __tablename__ = "extra_charges"

    __table_args__ = (Index("ix_extra_charges_case_status", "case_pk", "status"),)

    case_pk: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("deceased_cases.id"), nullable=False
    )
    charge_type: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    amount: Mapped[MoneyAmount | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ExtraChargeStatus.PENDING.value
    )
    service_date: Mapped[datetime | None] = mapped_column(nullable=True)
    requested_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("invoices.id"), nullable=True
    )

    def to_line(self) -> ExtraChargeLine:
        return ExtraChargeLine(line_id=str(self.id), amount=self.amount, status=self.status)
