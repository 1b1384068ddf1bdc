"""
ReconciliationService -- recompute one case's total charge and balance.

Responsibility:
    Locks the case row, re-reads coffin assignments, extra charges and
    payments from their tables, runs the pure aggregator and writes
    ``total_charge`` / ``balance`` / ``last_charge_update`` back, then
    appends a ``daily_storage`` history entry when the increment since the
    last pass is worth recording.

Architecture position:
    Kernel > Services -- imperative shell around ``domain.charges``.
    Called by the batch reconciliation task, by ``CaseLedgerService`` after
    every mutation, and by ``BillingReconciler.reconcile_one``.

Invariants enforced:
    - ``SELECT ... FOR UPDATE`` on the case row for the whole reconcile, so
      a timer pass and an on-demand refresh of the same case serialize.
    - Source tables are re-summed on every pass; nothing is incremented in
      place.
    - ``last_charge_update`` never moves backwards and never precedes
      admission.  On a failed write it is left untouched.
    - Complete cases stop accruing: ``as_of`` is clamped to completion.

Failure modes:
    - CaseNotFoundError: no such case (benign race with deletion).
    - PersistenceFailureError: totals could not be written after
      ``policy.persistence_max_attempts`` tries.
    - A failed history append is logged and reported through
      ``CaseReconciliation.audit_logged``; the balance update stands.
"""

import time
from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mortuary_kernel.domain.charges import (
    ChargeBreakdown,
    compute_case_charges,
    should_record_increment,
)
from mortuary_kernel.domain.clock import Clock, SystemClock, as_utc
from mortuary_kernel.domain.policy import BillingPolicy
from mortuary_kernel.domain.types import CaseReconciliation, ChargeType
from mortuary_kernel.domain.values import Money
from mortuary_kernel.exceptions import (
    AuditLogFailureError,
    CaseNotFoundError,
    PersistenceFailureError,
)
from mortuary_kernel.logging_config import LogContext, get_logger
from mortuary_kernel.models.case import DeceasedCase
from mortuary_kernel.models.coffin import CoffinAssignment
from mortuary_kernel.models.extra_charge import ExtraCharge
from mortuary_kernel.models.payment import Payment
from mortuary_kernel.services.base import BaseService
from mortuary_kernel.services.charge_history_service import ChargeHistoryService

logger = get_logger("services.reconciliation")

# Actor stamped on rows the engine writes on its own behalf.
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


class ReconciliationService(BaseService[DeceasedCase]):
    """
    Contract:
        ``reconcile_case`` leaves the case with
        ``balance == total_charge - sum(payments)`` as of ``as_of``.
        Flushes only; the caller commits.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: BillingPolicy | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        history_service: ChargeHistoryService | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._policy = policy or BillingPolicy()
        self._actor_id = actor_id
        self._history = history_service or ChargeHistoryService(session)
        self._sleep = sleep

    @property
    def policy(self) -> BillingPolicy:
        return self._policy

    def reconcile_case(
        self, case_id: str, as_of: datetime | None = None
    ) -> CaseReconciliation:
        """Recompute and persist one case's totals as of ``as_of``."""
        requested = as_utc(as_of or self._clock.now_utc())

        with LogContext.bind(case_id=case_id):
            case = self._lock_case(case_id)
            effective = self._effective_as_of(case, requested)

            breakdown = compute_case_charges(
                case.to_terms(),
                [a.to_line() for a in self._active_assignments(case.id)],
                [c.to_line() for c in self._extra_charges(case.id)],
                [p.to_line() for p in self._payments(case.id)],
                effective,
                self._policy,
            )
            self._log_diagnostics(breakdown)

            case_pk = case.id
            self._persist_totals(case, case_id, breakdown)
            history_recorded, audit_logged = self._record_increment(
                case_pk, case_id, breakdown
            )

            logger.info(
                "case_reconciled",
                extra={
                    "currency": breakdown.currency,
                    "as_of": breakdown.as_of,
                    "total_charge": breakdown.total_charge,
                    "total_payments": breakdown.total_payments,
                    "balance": breakdown.balance,
                    "incremental_storage": breakdown.incremental_storage,
                    "history_recorded": history_recorded,
                },
            )

        return CaseReconciliation(
            case_pk=case_pk,
            case_id=case_id,
            currency=breakdown.currency,
            as_of=breakdown.as_of,
            total_charge=breakdown.total_charge,
            total_payments=breakdown.total_payments,
            balance=breakdown.balance,
            incremental_storage=Money.of(
                breakdown.incremental_storage, breakdown.currency
            ).round().amount,
            storage_days=breakdown.storage_days,
            storage_total=breakdown.storage_total,
            coffin_total=breakdown.coffin_total,
            extras_total=breakdown.extras_total,
            embalming=breakdown.embalming,
            history_recorded=history_recorded,
            audit_logged=audit_logged,
            warnings=breakdown.warnings,
            skipped_components=breakdown.skipped_components,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _lock_case(self, case_id: str) -> DeceasedCase:
        case = self.session.execute(
            select(DeceasedCase)
            .where(DeceasedCase.case_id == case_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if case is None:
            raise CaseNotFoundError(case_id)
        return case

    def _active_assignments(self, case_pk: UUID) -> list[CoffinAssignment]:
        return list(
            self.session.execute(
                select(CoffinAssignment)
                .where(CoffinAssignment.case_pk == case_pk)
                .where(CoffinAssignment.is_active.is_(True))
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def _extra_charges(self, case_pk: UUID) -> list[ExtraCharge]:
        return list(
            self.session.execute(
                select(ExtraCharge)
                .where(ExtraCharge.case_pk == case_pk)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def _payments(self, case_pk: UUID) -> list[Payment]:
        return list(
            self.session.execute(
                select(Payment)
                .where(Payment.case_pk == case_pk)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    @staticmethod
    def _effective_as_of(case: DeceasedCase, requested: datetime) -> datetime:
        if not case.is_closed:
            return requested
        frozen_at = case.completed_at or case.last_charge_update
        if frozen_at is None:
            return requested
        return min(requested, as_utc(frozen_at))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _persist_totals(
        self, case: DeceasedCase, case_id: str, breakdown: ChargeBreakdown
    ) -> None:
        """Write totals in a SAVEPOINT, retrying with linear backoff."""
        candidates = [breakdown.as_of, as_utc(case.accrual_start)]
        if case.last_charge_update is not None:
            candidates.append(as_utc(case.last_charge_update))
        new_last_update = max(candidates)

        attempts = self._policy.persistence_max_attempts
        last_error: SQLAlchemyError | None = None
        for attempt in range(1, attempts + 1):
            savepoint = self.session.begin_nested()
            try:
                case.total_charge = breakdown.total_charge
                case.balance = breakdown.balance
                case.last_charge_update = new_last_update
                case.updated_by_id = self._actor_id
                self.session.flush()
                savepoint.commit()
                return
            except SQLAlchemyError as exc:
                savepoint.rollback()
                last_error = exc
                logger.warning(
                    "case_totals_persist_failed",
                    extra={
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "error": str(exc),
                    },
                )
                if attempt < attempts:
                    self._sleep(self._policy.persistence_backoff_seconds * attempt)

        logger.error(
            "case_totals_persist_exhausted",
            extra={"attempts": attempts},
        )
        raise PersistenceFailureError(case_id, attempts, str(last_error))

    def _record_increment(
        self, case_pk: UUID, case_id: str, breakdown: ChargeBreakdown
    ) -> tuple[bool, bool]:
        """Returns ``(history_recorded, audit_logged)``."""
        if not should_record_increment(
            breakdown.incremental_storage, self._policy.history_threshold
        ):
            return False, True

        amount = Money.of(breakdown.incremental_storage, breakdown.currency).round()
        try:
            self._history.append(
                case_pk=case_pk,
                case_ref=case_id,
                charge_type=ChargeType.DAILY_STORAGE.value,
                amount=amount.amount,
                currency=breakdown.currency,
                description=breakdown.storage_description,
                recorded_at=breakdown.as_of,
                actor_id=self._actor_id,
            )
        except AuditLogFailureError as exc:
            # Balance correctness wins over audit completeness.
            logger.error(
                "reconcile_audit_log_failed",
                extra={
                    "error_code": exc.code,
                    "incremental_storage": amount.amount,
                    "currency": breakdown.currency,
                },
            )
            return False, False
        return True, True

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    @staticmethod
    def _log_diagnostics(breakdown: ChargeBreakdown) -> None:
        for warning in breakdown.warnings:
            logger.warning(
                "data_integrity_warning",
                extra={
                    "source": warning.source,
                    "record_id": warning.record_id,
                    "field": warning.field,
                    "value": warning.value,
                    "reason": warning.reason,
                },
            )
        for skipped in breakdown.skipped_components:
            logger.warning(
                "charge_component_skipped",
                extra={
                    "source": skipped.source,
                    "record_id": skipped.record_id,
                    "error_code": skipped.error_code,
                    "reason": skipped.reason,
                },
            )
