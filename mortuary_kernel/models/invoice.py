"""Invoice and its lines."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mortuary_kernel.db.base import TrackedBase, UUIDString
from mortuary_kernel.db.types import CurrencyCode, MoneyAmount


class Invoice(TrackedBase):
    __tablename__ = "invoices"

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    case_pk: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("deceased_cases.id"), nullable=False
    )
    currency: Mapped[CurrencyCode] = mapped_column(nullable=False)
    issued_at: Mapped[datetime] = mapped_column(nullable=False)
    total_amount: Mapped[MoneyAmount] = mapped_column(nullable=False)
    amount_paid: Mapped[MoneyAmount] = mapped_column(nullable=False, default=Decimal("0"))
    balance_due: Mapped[MoneyAmount] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="issued")

    lines: Mapped[list["InvoiceLine"]] = relationship(
        "InvoiceLine",
        back_populates="invoice",
        order_by="InvoiceLine.line_number",
    )


class InvoiceLine(TrackedBase):
    __tablename__ = "invoice_lines"

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    line_type: Mapped[str] = mapped_column(String(30), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    amount: Mapped[MoneyAmount] = mapped_column(nullable=False)
    extra_charge_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("extra_charges.id"), nullable=True
    )

    invoice: Mapped[Invoice] = relationship(Invoice, back_populates="lines")
