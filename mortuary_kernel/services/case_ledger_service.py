"""
CaseLedgerService -- record billable events and refresh the balance.

Responsibility:
    Records payments, extra charges, coffin assignments and embalming costs
    against a case, then immediately reconciles that case so the stored
    balance is fresh without waiting for the next scheduled pass.

Invariants enforced:
    - The mutation is flushed before the refresh starts, and the refresh
      runs in its own SAVEPOINT: a failed refresh never undoes the write.
    - A failed refresh is reported through ``LedgerWriteResult.refresh_error``
      rather than hidden behind a stale balance.
    - Payments are append-only and strictly positive.
    - Extra charge status moves follow ``EXTRA_CHARGE_TRANSITIONS``; amounts
      can only be edited while ``pending``.
    - One active coffin assignment per case: a new one supersedes the old.
    - Complete cases accept payments, and extra charges on them may only be
      settled or cancelled.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mortuary_kernel.domain.clock import Clock, SystemClock, as_utc
from mortuary_kernel.domain.policy import BillingPolicy
from mortuary_kernel.domain.types import (
    EXTRA_CHARGE_TRANSITIONS,
    ExtraChargeStatus,
    LedgerWriteResult,
)
from mortuary_kernel.domain.values import parse_amount
from mortuary_kernel.exceptions import (
    CaseClosedError,
    CaseNotFoundError,
    CoffinNotFoundError,
    CoffinOutOfStockError,
    ExtraChargeNotFoundError,
    InvalidAmountError,
    InvalidChargeTransitionError,
    MortuaryBillingError,
)
from mortuary_kernel.logging_config import LogContext, get_logger
from mortuary_kernel.models.case import DeceasedCase
from mortuary_kernel.models.coffin import Coffin, CoffinAssignment
from mortuary_kernel.models.extra_charge import ExtraCharge
from mortuary_kernel.models.payment import Payment
from mortuary_kernel.services.base import BaseService
from mortuary_kernel.services.case_cache import CaseSummaryCache
from mortuary_kernel.services.reconciliation_service import (
    SYSTEM_ACTOR_ID,
    ReconciliationService,
)

logger = get_logger("services.case_ledger")

DEFAULT_PAYMENT_DESCRIPTION = "Mortuary Services Payment"

_CLOSED_CASE_TRANSITIONS = frozenset({ExtraChargeStatus.PAID, ExtraChargeStatus.CANCELLED})


class CaseLedgerService(BaseService[DeceasedCase]):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: BillingPolicy | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        cache: CaseSummaryCache | None = None,
        reconciler: ReconciliationService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._actor_id = actor_id
        self._cache = cache
        self._reconciler = reconciler or ReconciliationService(
            session, clock=self._clock, policy=policy, actor_id=actor_id
        )

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def record_payment(
        self,
        case_id: str,
        amount: Decimal | str | int,
        method: str,
        *,
        reference_code: str | None = None,
        description: str | None = None,
        payment_date: datetime | None = None,
    ) -> LedgerWriteResult:
        """Append a payment in the case currency and refresh the balance."""
        value = parse_amount(amount, "amount")
        if value <= 0:
            raise InvalidAmountError("amount", amount, "payment must be positive")
        case = self._get_case(case_id)
        now = self._clock.now_utc()

        payment = Payment(
            case_pk=case.id,
            amount=value,
            method=method,
            reference_code=reference_code or f"PAY-{int(now.timestamp() * 1000)}",
            description=description or DEFAULT_PAYMENT_DESCRIPTION,
            payment_date=as_utc(payment_date or now),
            created_by_id=self._actor_id,
        )
        self.session.add(payment)
        self.session.flush()
        logger.info(
            "payment_recorded",
            extra={
                "case_ref": case_id,
                "payment_id": str(payment.id),
                "amount": value,
                "currency": case.currency,
                "method": method,
                "reference_code": payment.reference_code,
            },
        )
        return self._refresh(case, payment.id)

    # ------------------------------------------------------------------
    # Extra charges
    # ------------------------------------------------------------------

    def add_extra_charge(
        self,
        case_id: str,
        charge_type: str,
        amount: Decimal | str | int,
        *,
        description: str | None = None,
        service_date: datetime | None = None,
        requested_by: str | None = None,
        notes: str | None = None,
    ) -> LedgerWriteResult:
        value = self._charge_amount(amount)
        case = self._get_open_case(case_id)

        charge = ExtraCharge(
            case_pk=case.id,
            charge_type=charge_type,
            description=description,
            amount=value,
            status=ExtraChargeStatus.PENDING.value,
            service_date=as_utc(service_date or self._clock.now_utc()),
            requested_by=requested_by,
            notes=notes,
            created_by_id=self._actor_id,
        )
        self.session.add(charge)
        self.session.flush()
        logger.info(
            "extra_charge_added",
            extra={
                "case_ref": case_id,
                "charge_id": str(charge.id),
                "charge_type": charge_type,
                "amount": value,
            },
        )
        return self._refresh(case, charge.id)

    def update_extra_charge(
        self,
        charge_id: UUID,
        *,
        amount: Decimal | str | int | None = None,
        description: str | None = None,
        service_date: datetime | None = None,
        notes: str | None = None,
    ) -> LedgerWriteResult:
        """Edit a charge's details. The amount is editable only while pending.

        Raises:
            CaseClosedError: the case is complete.
        """
        charge = self._get_charge(charge_id)
        case = self._get_case_by_pk(charge.case_pk)
        if case.is_closed:
            raise CaseClosedError(case.case_id, case.status or "")
        status = ExtraChargeStatus(charge.status)
        if status in (ExtraChargeStatus.PAID, ExtraChargeStatus.CANCELLED):
            raise InvalidChargeTransitionError(str(charge_id), status.value, status.value)
        if amount is not None:
            if status is not ExtraChargeStatus.PENDING:
                raise InvalidChargeTransitionError(
                    str(charge_id), status.value, "amount_change"
                )
            charge.amount = self._charge_amount(amount)
        if description is not None:
            charge.description = description
        if service_date is not None:
            charge.service_date = as_utc(service_date)
        if notes is not None:
            charge.notes = notes
        charge.updated_by_id = self._actor_id
        self.session.flush()

        logger.info(
            "extra_charge_updated",
            extra={"case_ref": case.case_id, "charge_id": str(charge_id)},
        )
        return self._refresh(case, charge.id)

    def transition_extra_charge(
        self, charge_id: UUID, new_status: str | ExtraChargeStatus
    ) -> LedgerWriteResult:
        """Move a charge along ``EXTRA_CHARGE_TRANSITIONS``.

        A complete case only lets charges be settled (``paid``) or
        ``cancelled``.
        """
        charge = self._get_charge(charge_id)
        current = ExtraChargeStatus(charge.status)
        target = ExtraChargeStatus(new_status)
        if target not in EXTRA_CHARGE_TRANSITIONS[current]:
            raise InvalidChargeTransitionError(str(charge_id), current.value, target.value)
        case = self._get_case_by_pk(charge.case_pk)
        if case.is_closed and target not in _CLOSED_CASE_TRANSITIONS:
            raise CaseClosedError(case.case_id, case.status or "")

        charge.status = target.value
        charge.updated_by_id = self._actor_id
        self.session.flush()

        logger.info(
            "extra_charge_transitioned",
            extra={
                "case_ref": case.case_id,
                "charge_id": str(charge_id),
                "from_status": current.value,
                "to_status": target.value,
            },
        )
        return self._refresh(case, charge.id)

    def cancel_extra_charge(self, charge_id: UUID) -> LedgerWriteResult:
        return self.transition_extra_charge(charge_id, ExtraChargeStatus.CANCELLED)

    # ------------------------------------------------------------------
    # Coffins and embalming
    # ------------------------------------------------------------------

    def assign_coffin(
        self,
        case_id: str,
        coffin_custom_id: str,
        *,
        quantity: int = 1,
        assigned_by: str | None = None,
    ) -> LedgerWriteResult:
        """Take coffins out of stock and make this the case's active assignment."""
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidAmountError("quantity", quantity, "must be a positive integer")
        case = self._get_open_case(case_id)

        coffin = self.session.execute(
            select(Coffin)
            .where(Coffin.custom_id == coffin_custom_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if coffin is None:
            raise CoffinNotFoundError(coffin_custom_id)
        if coffin.stock_quantity < quantity:
            raise CoffinOutOfStockError(coffin_custom_id, coffin.stock_quantity, quantity)

        now = self._clock.now_utc()
        superseded = self._supersede_assignments(case.id, now)

        assignment = CoffinAssignment(
            case_pk=case.id,
            coffin_id=coffin.id,
            unit_price=coffin.unit_price,
            currency=coffin.currency,
            fx_rate_kes_per_usd=coffin.fx_rate_kes_per_usd,
            quantity=quantity,
            assigned_at=now,
            assigned_by=assigned_by,
            is_active=True,
            created_by_id=self._actor_id,
        )
        coffin.stock_quantity -= quantity
        coffin.updated_by_id = self._actor_id
        self.session.add(assignment)
        self.session.flush()

        logger.info(
            "coffin_assigned",
            extra={
                "case_ref": case_id,
                "coffin_ref": coffin_custom_id,
                "assignment_id": str(assignment.id),
                "quantity": quantity,
                "superseded": superseded,
                "stock_remaining": coffin.stock_quantity,
            },
        )
        return self._refresh(case, assignment.id)

    def record_embalming_cost(
        self, case_id: str, amount: Decimal | str | int
    ) -> LedgerWriteResult:
        value = self._charge_amount(amount)
        case = self._get_open_case(case_id)
        case.embalming_cost = value
        case.updated_by_id = self._actor_id
        self.session.flush()
        logger.info(
            "embalming_cost_recorded",
            extra={"case_ref": case_id, "amount": value},
        )
        return self._refresh(case, case.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _refresh(self, case: DeceasedCase, record_id: UUID) -> LedgerWriteResult:
        """Reconcile in a SAVEPOINT; report rather than raise on failure."""
        case_id = case.case_id
        savepoint = self.session.begin_nested()
        try:
            result = self._reconciler.reconcile_case(case_id, self._clock.now_utc())
            savepoint.commit()
        except (MortuaryBillingError, SQLAlchemyError) as exc:
            savepoint.rollback()
            with LogContext.bind(case_id=case_id):
                logger.error(
                    "balance_refresh_failed",
                    extra={
                        "record_id": str(record_id),
                        "error_code": getattr(exc, "code", type(exc).__name__),
                    },
                    exc_info=True,
                )
            return LedgerWriteResult(
                record_id=record_id,
                case_id=case_id,
                balance=self._stored_balance(case_id),
                refresh_error=str(exc),
            )
        finally:
            if self._cache is not None:
                self._cache.invalidate_on_commit(self.session, case_id)

        return LedgerWriteResult(
            record_id=record_id, case_id=case_id, balance=result.balance
        )

    def _stored_balance(self, case_id: str) -> Decimal | None:
        return self.session.execute(
            select(DeceasedCase.balance).where(DeceasedCase.case_id == case_id)
        ).scalar_one_or_none()

    def _supersede_assignments(self, case_pk: UUID, now: datetime) -> int:
        active = self.session.execute(
            select(CoffinAssignment)
            .where(CoffinAssignment.case_pk == case_pk)
            .where(CoffinAssignment.is_active.is_(True))
        ).scalars().all()
        for assignment in active:
            assignment.is_active = False
            assignment.superseded_at = now
            assignment.updated_by_id = self._actor_id
        return len(active)

    @staticmethod
    def _charge_amount(amount) -> Decimal:
        value = parse_amount(amount, "amount")
        if value < 0:
            raise InvalidAmountError("amount", amount, "must not be negative")
        return value

    def _get_case(self, case_id: str) -> DeceasedCase:
        case = self.session.execute(
            select(DeceasedCase).where(DeceasedCase.case_id == case_id)
        ).scalar_one_or_none()
        if case is None:
            raise CaseNotFoundError(case_id)
        return case

    def _get_open_case(self, case_id: str) -> DeceasedCase:
        case = self._get_case(case_id)
        if case.is_closed:
            raise CaseClosedError(case_id, case.status or "")
        return case

    def _get_case_by_pk(self, case_pk: UUID) -> DeceasedCase:
        case = self.session.get(DeceasedCase, case_pk)
        if case is None:
            raise CaseNotFoundError(str(case_pk))
        return case

    def _get_charge(self, charge_id: UUID) -> ExtraCharge:
        charge = self.session.get(ExtraCharge, charge_id)
        if charge is None:
            raise ExtraChargeNotFoundError(str(charge_id))
        return charge
