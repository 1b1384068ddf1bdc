"""
BatchExecutor -- runs a submitted job one item at a time.

Each item executes inside its own SAVEPOINT: a task that reports FAILED or
SKIPPED, or raises, has its writes rolled back while the items before and
after it keep theirs.  By default the executor never commits and the caller
owns the outer transaction.  With ``commit_per_item`` it commits once the
job is RUNNING and again after every item, so the row locks an item took
are released at the item boundary and a stopped or interrupted run keeps
every item it finished.

Every item of a run is evaluated at the same ``as_of`` instant, stored on
the job row, so a sweep that takes minutes still bills all cases up to one
consistent point in time.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from mortuary_kernel.domain.clock import Clock, SystemClock, as_utc
from mortuary_kernel.exceptions import (
    BatchAlreadyRunningError,
    BatchIdempotencyError,
    BatchJobNotFoundError,
    TaskNotRegisteredError,
)
from mortuary_kernel.logging_config import LogContext, get_logger
from mortuary_kernel.services.sequence_service import SequenceService

from mortuary_batch.domain.types import (
    BatchItemResult,
    BatchItemStatus,
    BatchJob,
    BatchJobStatus,
    BatchRunResult,
    settle_job_status,
)
from mortuary_batch.models.batch import BatchItemModel, BatchJobModel
from mortuary_batch.tasks.base import BatchItemInput, BatchTask, TaskRegistry

logger = get_logger("batch.executor")

UNHANDLED_EXCEPTION = "UNHANDLED_EXCEPTION"


class BatchExecutor:

    def __init__(
        self,
        session: Session,
        task_registry: TaskRegistry,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
        commit_per_item: bool = False,
    ):
        self._session = session
        self._registry = task_registry
        self._clock = clock or SystemClock()
        self._sequences = sequence_service or SequenceService(session)
        self._commit_per_item = commit_per_item

    def submit_job(
        self,
        job_name: str,
        task_type: str,
        idempotency_key: str,
        actor_id: UUID,
        parameters: dict[str, Any] | None = None,
    ) -> BatchJob:
        """Record a PENDING job.

        Raises:
            TaskNotRegisteredError: ``task_type`` is unknown.
            BatchIdempotencyError: ``idempotency_key`` was used before.
        """
        if task_type not in self._registry:
            raise TaskNotRegisteredError(task_type, list(self._registry.list_tasks()))

        existing_id = self._session.execute(
            select(BatchJobModel.id).where(BatchJobModel.idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        if existing_id is not None:
            raise BatchIdempotencyError(idempotency_key, str(existing_id))

        job = BatchJobModel(
            job_number=self._sequences.next_value(SequenceService.BATCH_JOB),
            job_name=job_name,
            task_type=task_type,
            status=BatchJobStatus.PENDING.value,
            idempotency_key=idempotency_key,
            parameters=parameters or None,
            created_at=self._clock.now_utc(),
            created_by_id=actor_id,
        )
        self._session.add(job)
        self._session.flush()

        logger.info(
            "batch_job_submitted",
            extra={
                "job_id": str(job.id),
                "job_name": job_name,
                "task_type": task_type,
                "job_number": job.job_number,
                "idempotency_key": idempotency_key,
            },
        )
        return job.to_dto()

    def execute_job(
        self,
        job_id: UUID,
        actor_id: UUID,
        as_of: datetime | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> BatchRunResult:
        """Run a PENDING job to a terminal status.

        ``should_stop`` is polled before each item.  Once it returns True the
        remaining items are left untouched and the job ends CANCELLED.

        Raises:
            BatchJobNotFoundError: no such job.
            BatchAlreadyRunningError: the job has already been picked up.
        """
        job = self._lock_job(job_id)
        if job.job_status is not BatchJobStatus.PENDING:
            raise BatchAlreadyRunningError(job.job_name, str(job_id))
        task = self._registry.get(job.task_type)
        parameters = dict(job.parameters or {})
        run_at = as_utc(as_of) if as_of is not None else self._clock.now_utc()

        with LogContext.bind(job_id=str(job_id)):
            job.status = BatchJobStatus.RUNNING.value
            job.as_of = run_at
            job.started_at = self._clock.now_utc()
            job.updated_by_id = actor_id
            self._session.flush()
            self._checkpoint()

            try:
                items = task.prepare_items(parameters, self._session, run_at)
            except Exception as exc:
                logger.exception("batch_prepare_failed", extra={"task_type": job.task_type})
                return self._finish(
                    job, run_at, (), 0, stopped=False, error=f"prepare_items failed: {exc}"
                )

            job.total_items = len(items)
            logger.info(
                "batch_job_started",
                extra={"job_name": job.job_name, "total_items": len(items), "as_of": run_at},
            )

            results: list[BatchItemResult] = []
            stopped = False
            for item in items:
                if should_stop is not None and should_stop():
                    stopped = True
                    break
                result = self._run_item(task, item, parameters, run_at)
                results.append(result)
                self._session.add(BatchItemModel.record(job.id, result, actor_id))
                self._checkpoint()

            return self._finish(job, run_at, tuple(results), len(items), stopped=stopped)

    def cancel_job(self, job_id: UUID, reason: str, actor_id: UUID) -> BatchJob:
        """Cancel a job that has not started.

        A running job is stopped by its runner through ``should_stop``.

        Raises:
            BatchJobNotFoundError: no such job.
            ValueError: the job is no longer PENDING.
        """
        job = self._lock_job(job_id)
        if job.job_status is not BatchJobStatus.PENDING:
            raise ValueError(f"cannot cancel job in status {job.status}")

        job.status = BatchJobStatus.CANCELLED.value
        job.completed_at = self._clock.now_utc()
        job.error_summary = f"Cancelled: {reason}"
        job.updated_by_id = actor_id
        self._session.flush()

        logger.info(
            "batch_job_cancelled",
            extra={"job_id": str(job_id), "job_name": job.job_name, "reason": reason},
        )
        return job.to_dto()

    def get_job(self, job_id: UUID) -> BatchJob:
        job = self._session.get(BatchJobModel, job_id)
        if job is None:
            raise BatchJobNotFoundError(str(job_id))
        return job.to_dto()

    def get_job_items(self, job_id: UUID) -> tuple[BatchItemResult, ...]:
        rows = self._session.execute(
            select(BatchItemModel)
            .where(BatchItemModel.job_id == job_id)
            .order_by(BatchItemModel.item_index)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    def _checkpoint(self) -> None:
        if self._commit_per_item:
            self._session.commit()

    def _lock_job(self, job_id: UUID) -> BatchJobModel:
        job = self._session.execute(
            select(BatchJobModel).where(BatchJobModel.id == job_id).with_for_update()
        ).scalar_one_or_none()
        if job is None:
            raise BatchJobNotFoundError(str(job_id))
        return job

    def _run_item(
        self,
        task: BatchTask,
        item: BatchItemInput,
        parameters: dict[str, Any],
        as_of: datetime,
    ) -> BatchItemResult:
        started = time.monotonic()
        savepoint = self._session.begin_nested()
        try:
            outcome = task.execute_item(item, parameters, self._session, as_of)
        except Exception as exc:
            savepoint.rollback()
            logger.exception(
                "batch_item_failed",
                extra={"item_key": item.item_key, "error_code": UNHANDLED_EXCEPTION},
            )
            return BatchItemResult(
                item_index=item.item_index,
                item_key=item.item_key,
                status=BatchItemStatus.FAILED,
                error_code=UNHANDLED_EXCEPTION,
                error_message=str(exc),
                duration_ms=_elapsed_ms(started),
            )

        if outcome.status is BatchItemStatus.SUCCEEDED:
            savepoint.commit()
        else:
            savepoint.rollback()
            if outcome.status is BatchItemStatus.FAILED:
                logger.warning(
                    "batch_item_failed",
                    extra={
                        "item_key": item.item_key,
                        "error_code": outcome.error_code,
                        "error": outcome.error_message,
                    },
                )

        return BatchItemResult(
            item_index=item.item_index,
            item_key=item.item_key,
            status=outcome.status,
            error_code=outcome.error_code,
            error_message=outcome.error_message,
            result_data=outcome.result_data,
            duration_ms=_elapsed_ms(started),
        )

    def _finish(
        self,
        job: BatchJobModel,
        as_of: datetime,
        results: tuple[BatchItemResult, ...],
        total: int,
        *,
        stopped: bool,
        error: str | None = None,
    ) -> BatchRunResult:
        counts = {status: 0 for status in BatchItemStatus}
        for result in results:
            counts[result.status] += 1
        succeeded = counts[BatchItemStatus.SUCCEEDED]
        failed = counts[BatchItemStatus.FAILED]
        skipped = counts[BatchItemStatus.SKIPPED]

        if error is not None:
            status = BatchJobStatus.FAILED
        else:
            status = settle_job_status(succeeded, failed, skipped, stopped)
            if stopped:
                error = f"Stopped after {len(results)} of {total} item(s)"
            elif failed:
                error = f"{failed} item(s) failed"

        job.status = status.value
        job.succeeded_items = succeeded
        job.failed_items = failed
        job.skipped_items = skipped
        job.error_summary = error
        job.completed_at = self._clock.now_utc()
        self._session.flush()

        log = logger.error if status is BatchJobStatus.FAILED else logger.info
        log(
            "batch_job_finished",
            extra={
                "job_name": job.job_name,
                "status": status.value,
                "succeeded": succeeded,
                "failed": failed,
                "skipped": skipped,
                "not_started": total - len(results),
                "error_summary": error,
            },
        )

        return BatchRunResult(
            job_id=job.id,
            status=status,
            as_of=as_of,
            total_items=total,
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
            item_results=results,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
