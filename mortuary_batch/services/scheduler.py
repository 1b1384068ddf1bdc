"""
BatchScheduler -- polls the schedule table and fires due reconciliation runs.

One tick opens one session and fires every due schedule in ``job_name``
order.  Executors from ``executor_factory`` are expected to commit case by
case; each fired schedule then commits its own bookkeeping, and the summary
cache is cleared once the run has ended.

The background thread ticks every ``tick_interval_seconds``.  ``stop()``
lets the case in flight finish, the running job ends CANCELLED, and no
further schedule fires.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from mortuary_kernel.domain.clock import Clock, SystemClock
from mortuary_kernel.logging_config import get_logger
from mortuary_kernel.services.case_cache import CaseSummaryCache
from mortuary_kernel.services.reconciliation_service import SYSTEM_ACTOR_ID

from mortuary_batch.domain.schedule import compute_next_run, should_fire
from mortuary_batch.domain.types import ScheduleFrequency
from mortuary_batch.models.batch import JobScheduleModel
from mortuary_batch.services.executor import BatchExecutor

logger = get_logger("batch.scheduler")


class BatchScheduler:

    def __init__(
        self,
        session_factory: Callable[[], Session],
        executor_factory: Callable[[Session], BatchExecutor],
        clock: Clock | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        tick_interval_seconds: float = 30,
        cache: CaseSummaryCache | None = None,
    ):
        self._session_factory = session_factory
        self._executor_factory = executor_factory
        self._clock = clock or SystemClock()
        self._actor_id = actor_id
        self._tick_interval = tick_interval_seconds
        self._cache = cache
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> int:
        """Fire every due schedule once; returns how many fired."""
        session = self._session_factory()
        try:
            fired = self._fire_due(session, self._clock.now_utc())
            session.commit()
        except Exception:
            session.rollback()
            logger.exception("scheduler_tick_failed")
            return 0
        finally:
            session.close()
        return fired

    def start(self) -> None:
        if self.is_running:
            return
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._loop, name="billing-scheduler", daemon=True
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        self._stopping.set()
        if self.is_running:
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    def _loop(self) -> None:
        while not self._stopping.is_set():
            self.tick()
            self._stopping.wait(self._tick_interval)

    def _fire_due(self, session: Session, now: datetime) -> int:
        schedules = session.execute(
            select(JobScheduleModel)
            .where(JobScheduleModel.is_active.is_(True))
            .order_by(JobScheduleModel.job_name)
        ).scalars().all()

        fired = 0
        for schedule in schedules:
            if self._stopping.is_set():
                break
            if not should_fire(schedule.to_dto(), now):
                continue
            schedule_id, job_name = schedule.id, schedule.job_name
            try:
                self._fire(session, schedule, now)
                session.commit()
            except Exception:
                session.rollback()
                logger.exception(
                    "schedule_fire_failed",
                    extra={"schedule_id": str(schedule_id), "job_name": job_name},
                )
                continue
            finally:
                if self._cache is not None:
                    self._cache.clear()
            fired += 1
        return fired

    def _fire(self, session: Session, schedule: JobScheduleModel, now: datetime) -> None:
        executor = self._executor_factory(session)
        job = executor.submit_job(
            job_name=schedule.job_name,
            task_type=schedule.task_type,
            # One run per schedule per firing instant.
            idempotency_key=f"schedule-{schedule.id}-{now:%Y%m%d-%H%M%S}",
            actor_id=self._actor_id,
            parameters=dict(schedule.parameters or {}),
        )
        run = executor.execute_job(
            job.job_id, self._actor_id, as_of=now, should_stop=self._stopping.is_set
        )

        schedule.last_run_at = now
        schedule.last_run_status = run.status.value
        schedule.next_run_at = compute_next_run(
            ScheduleFrequency(schedule.frequency), now, schedule.cron_expression
        )
        schedule.updated_by_id = self._actor_id
        session.flush()

        logger.info(
            "schedule_fired",
            extra={
                "job_name": schedule.job_name,
                "job_id": str(job.job_id),
                "status": run.status.value,
                "succeeded": run.succeeded,
                "failed": run.failed,
                "next_run_at": schedule.next_run_at,
            },
        )
