"""
Reconciliation runs, their per-case outcomes, and the schedules that fire them.

``batch_jobs.idempotency_key`` is unique so a schedule slot can never
start two runs.  ``job_number`` comes from ``SequenceService``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mortuary_kernel.db.base import TrackedBase, UUIDString

from mortuary_batch.domain.types import (
    BatchItemResult,
    BatchItemStatus,
    BatchJob,
    BatchJobStatus,
    JobSchedule,
    ScheduleFrequency,
)


class BatchJobModel(TrackedBase):
    __tablename__ = "batch_jobs"

    __table_args__ = (
        Index("ix_batch_jobs_status", "status"),
        Index("ix_batch_jobs_task_type", "task_type"),
    )

    job_number: Mapped[int] = mapped_column(nullable=False, unique=True)
    job_name: Mapped[str] = mapped_column(String(200), nullable=False)
    task_type: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    parameters: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    # The single instant every case in the run is billed up to.
    as_of: Mapped[datetime | None] = mapped_column(nullable=True)
    total_items: Mapped[int] = mapped_column(default=0, nullable=False)
    succeeded_items: Mapped[int] = mapped_column(default=0, nullable=False)
    failed_items: Mapped[int] = mapped_column(default=0, nullable=False)
    skipped_items: Mapped[int] = mapped_column(default=0, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    error_summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    items: Mapped[list[BatchItemModel]] = relationship(
        back_populates="job", order_by="BatchItemModel.item_index"
    )

    @property
    def job_status(self) -> BatchJobStatus:
        return BatchJobStatus(self.status)

    def to_dto(self) -> BatchJob:
        return BatchJob(
            job_id=self.id,
            job_name=self.job_name,
            task_type=self.task_type,
            status=self.job_status,
            idempotency_key=self.idempotency_key,
            job_number=self.job_number,
            parameters=dict(self.parameters or {}),
            as_of=self.as_of,
            total_items=self.total_items,
            succeeded_items=self.succeeded_items,
            failed_items=self.failed_items,
            skipped_items=self.skipped_items,
            submitted_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
            submitted_by=self.created_by_id,
            error_summary=self.error_summary,
        )


class BatchItemModel(TrackedBase):
    """Outcome for one case within a run."""

    __tablename__ = "batch_items"

    __table_args__ = (Index("ix_batch_items_job", "job_id", "item_index"),)

    job_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("batch_jobs.id", ondelete="CASCADE"), nullable=False
    )
    item_index: Mapped[int] = mapped_column(nullable=False)
    item_key: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    result_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    duration_ms: Mapped[int] = mapped_column(default=0, nullable=False)

    job: Mapped[BatchJobModel] = relationship(back_populates="items")

    @classmethod
    def record(cls, job_id: UUID, result: BatchItemResult, actor_id: UUID) -> BatchItemModel:
        return cls(
            job_id=job_id,
            item_index=result.item_index,
            item_key=result.item_key,
            status=result.status.value,
            error_code=result.error_code,
            error_message=result.error_message,
            result_data=result.result_data,
            duration_ms=result.duration_ms,
            created_by_id=actor_id,
        )

    def to_dto(self) -> BatchItemResult:
        return BatchItemResult(
            item_index=self.item_index,
            item_key=self.item_key,
            status=BatchItemStatus(self.status),
            error_code=self.error_code,
            error_message=self.error_message,
            result_data=self.result_data,
            duration_ms=self.duration_ms,
        )


class JobScheduleModel(TrackedBase):
    __tablename__ = "job_schedules"

    __table_args__ = (Index("ix_job_schedules_due", "is_active", "next_run_at"),)

    job_name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    task_type: Mapped[str] = mapped_column(String(200), nullable=False)
    frequency: Mapped[str] = mapped_column(String(30), nullable=False)
    cron_expression: Mapped[str | None] = mapped_column(String(100), nullable=True)
    parameters: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_run_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_run_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    def to_dto(self) -> JobSchedule:
        return JobSchedule(
            schedule_id=self.id,
            job_name=self.job_name,
            task_type=self.task_type,
            frequency=ScheduleFrequency(self.frequency),
            parameters=dict(self.parameters or {}),
            cron_expression=self.cron_expression,
            next_run_at=self.next_run_at,
            last_run_at=self.last_run_at,
            last_run_status=(
                BatchJobStatus(self.last_run_status) if self.last_run_status else None
            ),
            is_active=self.is_active,
        )
