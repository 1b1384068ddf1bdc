"""
CaseService -- case intake, status changes and closure.

Intake fixes the billing terms (currency, rate category, USD daily rate,
FX rate).  Closure reconciles one last time at the completion instant and
then marks the case ``complete``; from then on storage stops accruing.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from mortuary_kernel.domain.clock import Clock, SystemClock, as_utc
from mortuary_kernel.domain.conversion import parse_rate
from mortuary_kernel.domain.currency import CurrencyRegistry
from mortuary_kernel.domain.policy import BillingPolicy
from mortuary_kernel.domain.types import CaseReconciliation, CaseStatus, RateCategory
from mortuary_kernel.domain.values import parse_amount
from mortuary_kernel.exceptions import (
    CaseAlreadyExistsError,
    CaseClosedError,
    CaseNotFoundError,
    InvalidAmountError,
    InvalidRateError,
)
from mortuary_kernel.logging_config import get_logger
from mortuary_kernel.models.case import DeceasedCase
from mortuary_kernel.services.base import BaseService
from mortuary_kernel.services.case_cache import CaseSummaryCache
from mortuary_kernel.services.reconciliation_service import (
    SYSTEM_ACTOR_ID,
    ReconciliationService,
)

logger = get_logger("services.case")


class CaseService(BaseService[DeceasedCase]):

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
        self._policy = policy or BillingPolicy()
        self._actor_id = actor_id
        self._cache = cache
        self._reconciler = ReconciliationService(
            session, clock=self._clock, policy=self._policy, actor_id=actor_id
        )

    def register_case(
        self,
        case_id: str,
        full_name: str,
        *,
        rate_category: str = RateCategory.STANDARD.value,
        currency: str = "KES",
        admitted_at: datetime | None = None,
        daily_rate_usd: Decimal | str | None = None,
        fx_rate_kes_per_usd: Decimal | str | None = None,
        embalming_cost: Decimal | str | None = None,
    ) -> DeceasedCase:
        """Create a case; admission defaults to now.

        Raises:
            CaseAlreadyExistsError: ``case_id`` is taken.
            InvalidCurrencyError / InvalidRateError / InvalidAmountError:
                billing terms are malformed.
        """
        if not case_id or not case_id.strip():
            raise ValueError("case_id is required")
        existing = self.session.execute(
            select(DeceasedCase.id).where(DeceasedCase.case_id == case_id)
        ).scalar_one_or_none()
        if existing is not None:
            raise CaseAlreadyExistsError(case_id)

        code = CurrencyRegistry.validate(currency)
        category = RateCategory(rate_category.strip().lower()).value
        usd_rate = self._positive(daily_rate_usd, "daily_rate_usd")
        fx_rate = (
            parse_rate(fx_rate_kes_per_usd, "USD", "KES")
            if fx_rate_kes_per_usd is not None
            else None
        )
        embalming = self._non_negative(embalming_cost, "embalming_cost")
        admitted = as_utc(admitted_at or self._clock.now_utc())

        case = DeceasedCase(
            case_id=case_id.strip(),
            full_name=full_name,
            rate_category=category,
            currency=code,
            daily_rate_usd=usd_rate,
            fx_rate_kes_per_usd=fx_rate,
            admitted_at=admitted,
            last_charge_update=admitted,
            total_charge=Decimal("0"),
            balance=Decimal("0"),
            embalming_cost=embalming,
            status=CaseStatus.ADMITTED.value,
            created_by_id=self._actor_id,
        )
        self.session.add(case)
        self.session.flush()

        logger.info(
            "case_registered",
            extra={
                "case_ref": case.case_id,
                "currency": code,
                "rate_category": category,
                "admitted_at": admitted,
            },
        )
        return case

    def update_status(self, case_id: str, status: str) -> DeceasedCase:
        """Move a case between open states. Use ``complete_case`` to close."""
        new_status = CaseStatus(status)
        if new_status is CaseStatus.COMPLETE:
            raise ValueError("use complete_case() to close a case")
        case = self._get(case_id)
        if case.is_closed:
            raise CaseClosedError(case_id, case.status or "")
        old_status = case.status
        case.status = new_status.value
        case.updated_by_id = self._actor_id
        self.session.flush()
        self._invalidate(case_id)
        logger.info(
            "case_status_changed",
            extra={"case_ref": case_id, "from_status": old_status, "to_status": new_status.value},
        )
        return case

    def complete_case(
        self, case_id: str, completed_at: datetime | None = None
    ) -> CaseReconciliation:
        """Reconcile at ``completed_at`` and close the case."""
        case = self._get(case_id)
        if case.is_closed:
            raise CaseClosedError(case_id, case.status or "")
        when = as_utc(completed_at or self._clock.now_utc())

        result = self._reconciler.reconcile_case(case_id, when)

        case.status = CaseStatus.COMPLETE.value
        case.completed_at = when
        case.updated_by_id = self._actor_id
        self.session.flush()
        self._invalidate(case_id)

        logger.info(
            "case_completed",
            extra={
                "case_ref": case_id,
                "completed_at": when,
                "total_charge": result.total_charge,
                "balance": result.balance,
            },
        )
        return result

    def _get(self, case_id: str) -> DeceasedCase:
        case = self.session.execute(
            select(DeceasedCase).where(DeceasedCase.case_id == case_id)
        ).scalar_one_or_none()
        if case is None:
            raise CaseNotFoundError(case_id)
        return case

    def _invalidate(self, case_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate_on_commit(self.session, case_id)

    @staticmethod
    def _positive(value, field: str) -> Decimal | None:
        if value is None:
            return None
        try:
            return parse_rate(value)
        except InvalidRateError as exc:
            raise InvalidAmountError(field, value, "must be a positive number") from exc

    @staticmethod
    def _non_negative(value, field: str) -> Decimal | None:
        if value is None:
            return None
        amount = parse_amount(value, field)
        if amount < 0:
            raise InvalidAmountError(field, value, "must not be negative")
        return amount

