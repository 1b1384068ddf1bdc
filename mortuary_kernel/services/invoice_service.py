"""
InvoiceService -- bundle a case's charges into a numbered invoice.

The case is reconciled first so the invoice and the stored balance agree.
Storage, coffin and embalming become one line each; every non-cancelled
extra charge gets its own line, and pending ones move to ``invoiced``.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from mortuary_kernel.domain.clock import Clock, SystemClock
from mortuary_kernel.domain.policy import BillingPolicy
from mortuary_kernel.domain.types import ExtraChargeStatus
from mortuary_kernel.domain.values import Money
from mortuary_kernel.exceptions import CaseNotFoundError
from mortuary_kernel.logging_config import get_logger
from mortuary_kernel.models.case import DeceasedCase
from mortuary_kernel.models.extra_charge import ExtraCharge
from mortuary_kernel.models.invoice import Invoice, InvoiceLine
from mortuary_kernel.services.base import BaseService
from mortuary_kernel.services.case_cache import CaseSummaryCache
from mortuary_kernel.services.reconciliation_service import (
    SYSTEM_ACTOR_ID,
    ReconciliationService,
)
from mortuary_kernel.services.sequence_service import SequenceService

logger = get_logger("services.invoice")


class InvoiceService(BaseService[Invoice]):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: BillingPolicy | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        cache: CaseSummaryCache | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._actor_id = actor_id
        self._cache = cache
        self._sequences = SequenceService(session)
        self._reconciler = ReconciliationService(
            session, clock=self._clock, policy=policy, actor_id=actor_id
        )

    def create_invoice(self, case_id: str) -> Invoice:
        """Reconcile ``case_id`` and issue an invoice for everything billed so far."""
        now = self._clock.now_utc()
        result = self._reconciler.reconcile_case(case_id, now)
        case = self.session.execute(
            select(DeceasedCase).where(DeceasedCase.case_id == case_id)
        ).scalar_one_or_none()
        if case is None:
            raise CaseNotFoundError(case_id)

        number = self._sequences.next_value(SequenceService.INVOICE)
        invoice = Invoice(
            invoice_number=f"INV-{number:06d}",
            case_pk=case.id,
            currency=result.currency,
            issued_at=now,
            total_amount=result.total_charge,
            amount_paid=result.total_payments,
            balance_due=result.balance,
            status="issued",
            created_by_id=self._actor_id,
        )
        self.session.add(invoice)
        self.session.flush()

        lines: list[InvoiceLine] = []

        def add_line(line_type: str, description: str, amount: Decimal, extra_id=None):
            lines.append(
                InvoiceLine(
                    invoice_id=invoice.id,
                    line_number=len(lines) + 1,
                    line_type=line_type,
                    description=description,
                    amount=amount,
                    extra_charge_id=extra_id,
                    created_by_id=self._actor_id,
                )
            )

        add_line(
            "storage",
            f"Mortuary storage ({result.storage_days:.4f} days)",
            result.storage_total,
        )
        if result.coffin_total:
            add_line("coffin", "Coffin", result.coffin_total)
        if result.embalming:
            add_line("embalming", "Embalming", result.embalming)

        bundled = 0
        extras = self.session.execute(
            select(ExtraCharge)
            .where(ExtraCharge.case_pk == case.id)
            .where(ExtraCharge.status != ExtraChargeStatus.CANCELLED.value)
            .order_by(ExtraCharge.service_date, ExtraCharge.created_at)
        ).scalars()
        for extra in extras:
            amount = Money.of(extra.amount or Decimal("0"), result.currency).round().amount
            add_line(
                "extra_charge",
                extra.description or extra.charge_type,
                amount,
                extra_id=extra.id,
            )
            if extra.status == ExtraChargeStatus.PENDING.value:
                extra.status = ExtraChargeStatus.INVOICED.value
                extra.invoice_id = invoice.id
                extra.updated_by_id = self._actor_id
                bundled += 1

        self.session.add_all(lines)
        self.session.flush()
        if self._cache is not None:
            self._cache.invalidate_on_commit(self.session, case_id)

        logger.info(
            "invoice_created",
            extra={
                "case_ref": case_id,
                "invoice_number": invoice.invoice_number,
                "total_amount": invoice.total_amount,
                "balance_due": invoice.balance_due,
                "line_count": len(lines),
                "extras_bundled": bundled,
            },
        )
        return invoice
