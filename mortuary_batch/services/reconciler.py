"""
BillingReconciler -- the two entry points into storage-charge reconciliation.

``reconcile_all`` runs the batch task over every open case as one tracked
job, committing case by case, and summarizes it; ``reconcile_one``
refreshes a single case on demand (e.g. just before a payment screen shows
a balance).  Each call opens and commits its own session, so the scheduler
thread and request handlers never share one.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mortuary_kernel.domain.clock import Clock, SystemClock, as_utc
from mortuary_kernel.domain.policy import BillingPolicy
from mortuary_kernel.domain.types import CaseBalance
from mortuary_kernel.exceptions import (
    BalanceRefreshError,
    CaseNotFoundError,
    MortuaryBillingError,
)
from mortuary_kernel.logging_config import get_logger
from mortuary_kernel.models.case import DeceasedCase
from mortuary_kernel.services.case_cache import CaseSummaryCache
from mortuary_kernel.services.reconciliation_service import (
    SYSTEM_ACTOR_ID,
    ReconciliationService,
)

from mortuary_batch.domain.types import BatchItemStatus, ReconciliationReport
from mortuary_batch.services.executor import BatchExecutor
from mortuary_batch.tasks.base import TaskRegistry
from mortuary_batch.tasks.reconciliation_tasks import (
    RECONCILE_STORAGE_CHARGES,
    StorageChargeReconciliationTask,
)

logger = get_logger("batch.reconciler")


class BillingReconciler:

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        policy: BillingPolicy | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        cache: CaseSummaryCache | None = None,
        task_registry: TaskRegistry | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._policy = policy or BillingPolicy()
        self._actor_id = actor_id
        self._cache = cache
        if task_registry is None:
            task_registry = TaskRegistry()
            task_registry.register(
                StorageChargeReconciliationTask(
                    policy=self._policy, actor_id=actor_id, clock=self._clock
                )
            )
        self._registry = task_registry

    def reconcile_all(self, now: datetime | None = None) -> ReconciliationReport:
        """Reconcile every open case as of ``now`` and report per-currency totals."""
        as_of = as_utc(now) if now is not None else self._clock.now_utc()
        session = self._session_factory()
        try:
            executor = BatchExecutor(
                session, self._registry, clock=self._clock, commit_per_item=True
            )
            job = executor.submit_job(
                job_name="reconcile_all",
                task_type=RECONCILE_STORAGE_CHARGES,
                idempotency_key=f"reconcile-all-{as_of:%Y%m%dT%H%M%S}-{uuid4().hex[:12]}",
                actor_id=self._actor_id,
            )
            run = executor.execute_job(job.job_id, self._actor_id, as_of=as_of)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        totals: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        audit_failures = 0
        failed_cases: list[str] = []
        for item in run.item_results:
            if item.status == BatchItemStatus.FAILED:
                failed_cases.append(item.item_key)
                continue
            if item.status != BatchItemStatus.SUCCEEDED or not item.result_data:
                continue
            data = item.result_data
            totals[data["currency"]] += Decimal(data["incremental_storage"])
            if not data.get("audit_logged", True):
                audit_failures += 1

        if self._cache is not None:
            self._cache.clear()

        report = ReconciliationReport(
            job_id=run.job_id,
            status=run.status,
            as_of=as_of,
            processed=run.succeeded,
            failed=run.failed,
            skipped=run.skipped,
            not_started=run.not_started,
            audit_failures=audit_failures,
            total_incremental_charge=dict(totals),
            failed_cases=tuple(failed_cases),
        )
        logger.info(
            "reconcile_all_finished",
            extra={
                "job_id": str(run.job_id),
                "status": run.status.value,
                "processed": report.processed,
                "failed": report.failed,
                "skipped": report.skipped,
                "audit_failures": audit_failures,
                "total_incremental_charge": report.total_incremental_charge,
            },
        )
        return report

    def reconcile_one(self, case_id: str, now: datetime | None = None) -> CaseBalance:
        """Reconcile one case and return its fresh balance.

        Raises:
            CaseNotFoundError: no such case.
            BalanceRefreshError: anything else went wrong; carries the
                balance stored before this attempt.
        """
        as_of = as_utc(now) if now is not None else self._clock.now_utc()
        session = self._session_factory()
        try:
            service = ReconciliationService(
                session, clock=self._clock, policy=self._policy, actor_id=self._actor_id
            )
            result = service.reconcile_case(case_id, as_of)
            session.commit()
        except CaseNotFoundError:
            session.rollback()
            raise
        except (MortuaryBillingError, SQLAlchemyError) as exc:
            session.rollback()
            last_known = self._stored_balance(session, case_id)
            logger.error(
                "reconcile_one_failed",
                extra={
                    "case_ref": case_id,
                    "error_code": getattr(exc, "code", type(exc).__name__),
                    "error": str(exc),
                    "last_known_balance": last_known,
                },
            )
            raise BalanceRefreshError(case_id, str(exc), last_known) from exc
        finally:
            session.close()
            if self._cache is not None:
                self._cache.invalidate(case_id)

        return CaseBalance(
            case_id=case_id,
            currency=result.currency,
            total_charge=result.total_charge,
            balance=result.balance,
            as_of=result.as_of,
        )

    @staticmethod
    def _stored_balance(session: Session, case_id: str) -> Decimal | None:
        try:
            return session.execute(
                select(DeceasedCase.balance).where(DeceasedCase.case_id == case_id)
            ).scalar_one_or_none()
        except SQLAlchemyError:
            logger.warning("stored_balance_unavailable", extra={"case_ref": case_id})
            return None
