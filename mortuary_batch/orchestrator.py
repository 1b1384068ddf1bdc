"""
BatchOrchestrator -- DI container for the billing batch system.

Contract:
    Wires the TaskRegistry with the storage-charge reconciliation task,
    creates BatchExecutor / BatchScheduler / BillingReconciler, and
    installs the default schedules.  Single place where all batch
    dependencies are composed.

Architecture: mortuary_batch (top-level).  Nothing in mortuary_kernel
    imports from here.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from functools import partial
from typing import TYPE_CHECKING, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from mortuary_kernel.domain.clock import Clock, SystemClock, as_utc
from mortuary_kernel.domain.policy import BillingPolicy
from mortuary_kernel.domain.types import CaseFinancialSummary
from mortuary_kernel.logging_config import get_logger
from mortuary_kernel.selectors.case_selector import CaseLedgerSelector
from mortuary_kernel.services.case_cache import CaseSummaryCache
from mortuary_kernel.services.reconciliation_service import SYSTEM_ACTOR_ID
from mortuary_kernel.services.sequence_service import SequenceService

from mortuary_batch.domain.schedule import compute_next_run, parse_cron
from mortuary_batch.domain.types import JobSchedule, ScheduleFrequency
from mortuary_batch.models.batch import JobScheduleModel
from mortuary_batch.services.executor import BatchExecutor
from mortuary_batch.services.reconciler import BillingReconciler
from mortuary_batch.services.scheduler import BatchScheduler
from mortuary_batch.tasks.base import TaskRegistry
from mortuary_batch.tasks.reconciliation_tasks import (
    RECONCILE_STORAGE_CHARGES,
    StorageChargeReconciliationTask,
)

if TYPE_CHECKING:
    from mortuary_config.schema import BillingConfig

logger = get_logger("batch.orchestrator")

DEFAULT_RECONCILE_CRON = "*/5 * * * *"
DEFAULT_STARTUP_DELAY_SECONDS = 15 * 60

RECURRING_SCHEDULE_NAME = "reconcile_storage_charges"
STARTUP_SCHEDULE_NAME = "reconcile_storage_charges_startup"

__all__ = [
    "BatchOrchestrator",
    "SYSTEM_ACTOR_ID",
    "default_task_registry",
]


def default_task_registry(
    policy: BillingPolicy | None = None,
    actor_id: UUID = SYSTEM_ACTOR_ID,
    clock: Clock | None = None,
) -> TaskRegistry:
    """Create a TaskRegistry pre-loaded with the billing tasks."""
    registry = TaskRegistry()
    registry.register(
        StorageChargeReconciliationTask(policy=policy, actor_id=actor_id, clock=clock)
    )
    return registry


def _summary_loader(
    session_factory: Callable[[], Session],
) -> Callable[[str], CaseFinancialSummary]:
    def load(case_id: str) -> CaseFinancialSummary:
        session = session_factory()
        try:
            return CaseLedgerSelector(session).get_financial_summary(case_id)
        finally:
            session.close()

    return load


class BatchOrchestrator:
    """DI container for the billing batch system.

    Contract:
        - ``from_config()`` builds a fully wired orchestrator from config.
        - ``create_executor()`` returns a BatchExecutor for ad-hoc jobs.
        - ``create_scheduler()`` returns a BatchScheduler for background use.
        - ``create_reconciler()`` returns the on-demand BillingReconciler.
        - ``ensure_default_schedules()`` installs the cron + startup runs.

    Non-goals:
        - Does NOT start the scheduler automatically -- caller decides.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        policy: BillingPolicy | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        cache: CaseSummaryCache | None = None,
        task_registry: TaskRegistry | None = None,
        reconcile_cron: str = DEFAULT_RECONCILE_CRON,
        startup_delay_seconds: float = DEFAULT_STARTUP_DELAY_SECONDS,
        tick_interval_seconds: float = 30,
    ) -> None:
        parse_cron(reconcile_cron)
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._policy = policy or BillingPolicy()
        self._actor_id = actor_id
        self._cache = cache
        self._task_registry = (
            task_registry
            if task_registry is not None
            else default_task_registry(self._policy, actor_id, self._clock)
        )
        self._reconcile_cron = reconcile_cron
        self._startup_delay = startup_delay_seconds
        self._tick_interval = tick_interval_seconds

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        session_factory: Callable[[], Session],
        config: BillingConfig,
        clock: Clock | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> BatchOrchestrator:
        """Create a fully wired orchestrator from a loaded BillingConfig."""
        from mortuary_config.bridges import build_billing_policy

        effective_clock = clock or SystemClock()
        return cls(
            session_factory=session_factory,
            clock=effective_clock,
            policy=build_billing_policy(config),
            actor_id=actor_id,
            cache=CaseSummaryCache(
                loader=_summary_loader(session_factory),
                ttl_seconds=config.summary_cache_ttl_seconds,
                clock=effective_clock,
            ),
            reconcile_cron=config.reconcile_cron,
            startup_delay_seconds=config.startup_delay_seconds,
            tick_interval_seconds=config.scheduler_tick_seconds,
        )

    # -------------------------------------------------------------------------
    # Components
    # -------------------------------------------------------------------------

    def create_executor(
        self, session: Session, commit_per_item: bool = False
    ) -> BatchExecutor:
        """Create a BatchExecutor bound to ``session``."""
        return BatchExecutor(
            session=session,
            task_registry=self._task_registry,
            clock=self._clock,
            sequence_service=SequenceService(session),
            commit_per_item=commit_per_item,
        )

    def create_scheduler(self) -> BatchScheduler:
        """Create a BatchScheduler; each tick takes a fresh session.

        Scheduled sweeps commit after every case.
        """
        return BatchScheduler(
            session_factory=self._session_factory,
            executor_factory=partial(self.create_executor, commit_per_item=True),
            clock=self._clock,
            actor_id=self._actor_id,
            tick_interval_seconds=self._tick_interval,
            cache=self._cache,
        )

    def create_reconciler(self) -> BillingReconciler:
        return BillingReconciler(
            session_factory=self._session_factory,
            clock=self._clock,
            policy=self._policy,
            actor_id=self._actor_id,
            cache=self._cache,
            task_registry=self._task_registry,
        )

    # -------------------------------------------------------------------------
    # Schedules
    # -------------------------------------------------------------------------

    def ensure_default_schedules(
        self, now: datetime | None = None
    ) -> tuple[JobSchedule, JobSchedule]:
        """Install (or refresh) the recurring and startup reconciliation runs.

        The recurring schedule keeps its ``next_run_at`` unless its cron
        expression changed.  The startup schedule is re-armed on every call
        to fire ``startup_delay_seconds`` from ``now``.
        """
        now = as_utc(now) if now is not None else self._clock.now_utc()
        session = self._session_factory()
        try:
            recurring = self._upsert_schedule(
                session,
                job_name=RECURRING_SCHEDULE_NAME,
                frequency=ScheduleFrequency.CRON,
                cron_expression=self._reconcile_cron,
                next_run_at=compute_next_run(
                    ScheduleFrequency.CRON, None, self._reconcile_cron, base_time=now
                ),
                rearm=False,
            )
            startup = self._upsert_schedule(
                session,
                job_name=STARTUP_SCHEDULE_NAME,
                frequency=ScheduleFrequency.ONCE,
                cron_expression=None,
                next_run_at=now + timedelta(seconds=self._startup_delay),
                rearm=True,
            )
            session.commit()
            result = (recurring.to_dto(), startup.to_dto())
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info(
            "default_schedules_ensured",
            extra={
                "reconcile_cron": self._reconcile_cron,
                "recurring_next_run_at": result[0].next_run_at,
                "startup_run_at": result[1].next_run_at,
            },
        )
        return result

    def _upsert_schedule(
        self,
        session: Session,
        *,
        job_name: str,
        frequency: ScheduleFrequency,
        cron_expression: str | None,
        next_run_at: datetime | None,
        rearm: bool,
    ) -> JobScheduleModel:
        model = session.execute(
            select(JobScheduleModel).where(JobScheduleModel.job_name == job_name)
        ).scalar_one_or_none()

        if model is None:
            model = JobScheduleModel(
                job_name=job_name,
                task_type=RECONCILE_STORAGE_CHARGES,
                frequency=frequency.value,
                cron_expression=cron_expression,
                next_run_at=next_run_at,
                is_active=True,
                created_by_id=self._actor_id,
            )
            session.add(model)
        else:
            if rearm or model.cron_expression != cron_expression:
                model.next_run_at = next_run_at
            if rearm:
                model.last_run_at = None
                model.last_run_status = None
            model.frequency = frequency.value
            model.cron_expression = cron_expression
            model.is_active = True
            model.updated_by_id = self._actor_id

        session.flush()
        return model

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def policy(self) -> BillingPolicy:
        return self._policy

    @property
    def task_registry(self) -> TaskRegistry:
        return self._task_registry

    @property
    def actor_id(self) -> UUID:
        return self._actor_id
