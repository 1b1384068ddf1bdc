"""
Module: mortuary_kernel.selectors.case_selector
Responsibility: Read models over cases: the financial summary shown to staff,
    the list of open cases the reconciliation job walks, and the charge
    history trail.

Summaries report the totals stored by the last reconciliation; they never
recompute accrual themselves.  Component sums skip negative amounts, which
reconciliation treats as zero.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select

from mortuary_kernel.domain.types import (
    CaseFinancialSummary,
    CaseStatus,
    ChargeHistoryRecord,
    ExtraChargeStatus,
)
from mortuary_kernel.exceptions import CaseNotFoundError
from mortuary_kernel.models.case import DeceasedCase
from mortuary_kernel.models.charge_history import ChargeHistoryEntry
from mortuary_kernel.models.extra_charge import ExtraCharge
from mortuary_kernel.models.payment import Payment
from mortuary_kernel.selectors.base import BaseSelector

_ZERO = Decimal("0")


def _open_case_filter():
    return or_(
        DeceasedCase.status.is_(None),
        func.lower(DeceasedCase.status) != CaseStatus.COMPLETE.value,
    )


class CaseLedgerSelector(BaseSelector[DeceasedCase]):

    def list_open_case_ids(self) -> list[str]:
        """External ids of every case still accruing, in a stable order."""
        return list(
            self.session.execute(
                select(DeceasedCase.case_id)
                .where(_open_case_filter())
                .order_by(DeceasedCase.case_id)
            ).scalars()
        )

    def get_financial_summary(self, case_id: str) -> CaseFinancialSummary:
        case = self.session.execute(
            select(DeceasedCase).where(DeceasedCase.case_id == case_id)
        ).scalar_one_or_none()
        if case is None:
            raise CaseNotFoundError(case_id)
        return self._summarize(case)

    def list_financial_summaries(
        self, include_closed: bool = False
    ) -> list[CaseFinancialSummary]:
        stmt = select(DeceasedCase).order_by(DeceasedCase.case_id)
        if not include_closed:
            stmt = stmt.where(_open_case_filter())
        return [self._summarize(case) for case in self.session.execute(stmt).scalars()]

    def charge_history(self, case_id: str) -> list[ChargeHistoryRecord]:
        """History entries for a case, oldest first."""
        rows = self.session.execute(
            select(ChargeHistoryEntry)
            .where(ChargeHistoryEntry.case_ref == case_id)
            .order_by(ChargeHistoryEntry.recorded_at, ChargeHistoryEntry.created_at)
        ).scalars()
        return [
            ChargeHistoryRecord(
                entry_id=row.id,
                case_id=row.case_ref,
                charge_type=row.charge_type,
                amount=row.amount,
                currency=row.currency,
                description=row.description,
                recorded_at=row.recorded_at,
            )
            for row in rows
        ]

    def _summarize(self, case: DeceasedCase) -> CaseFinancialSummary:
        payments_total, payment_count = self._payment_totals(case.id)
        return CaseFinancialSummary(
            case_pk=case.id,
            case_id=case.case_id,
            full_name=case.full_name,
            status=case.status,
            currency=case.currency,
            rate_category=case.rate_category,
            admitted_at=case.accrual_start,
            last_charge_update=case.last_charge_update,
            total_charge=case.total_charge,
            balance=case.balance,
            total_payments=payments_total,
            extra_charges_total=self._extras_total(case.id),
            embalming_cost=case.embalming_cost or _ZERO,
            payment_count=payment_count,
        )

    def _payment_totals(self, case_pk: UUID) -> tuple[Decimal, int]:
        total, count = self.session.execute(
            select(
                func.coalesce(func.sum(Payment.amount).filter(Payment.amount >= 0), 0),
                func.count(Payment.id),
            )
            .where(Payment.case_pk == case_pk)
        ).one()
        return Decimal(str(total)), int(count)

    def _extras_total(self, case_pk: UUID) -> Decimal:
        total = self.session.execute(
            select(func.coalesce(func.sum(ExtraCharge.amount), 0))
            .where(ExtraCharge.case_pk == case_pk)
            .where(ExtraCharge.status != ExtraChargeStatus.CANCELLED.value)
            .where(ExtraCharge.amount >= 0)
        ).scalar_one()
        return Decimal(str(total))
