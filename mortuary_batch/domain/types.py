"""
Value types for reconciliation runs and their schedules.

Nothing here touches the database; the ORM models in
``mortuary_batch.models.batch`` convert to and from these.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class BatchJobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class BatchItemStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    # The case disappeared between listing and processing.
    SKIPPED = "skipped"


class ScheduleFrequency(str, Enum):
    CRON = "cron"
    ONCE = "once"
    ON_DEMAND = "on_demand"


def settle_job_status(
    succeeded: int, failed: int, skipped: int, stopped: bool = False
) -> BatchJobStatus:
    """Final status of a run from its item counts.

    Skipped cases are benign: a run with no failures is COMPLETED.  A run
    is FAILED only when every attempted case failed.
    """
    if stopped:
        return BatchJobStatus.CANCELLED
    if failed == 0:
        return BatchJobStatus.COMPLETED
    if succeeded == 0 and skipped == 0:
        return BatchJobStatus.FAILED
    return BatchJobStatus.PARTIALLY_COMPLETED


@dataclass(frozen=True)
class BatchJob:
    """One submitted run.  ``job_number`` orders runs; ``idempotency_key`` is unique."""

    job_id: UUID
    job_name: str
    task_type: str
    status: BatchJobStatus
    idempotency_key: str
    job_number: int
    parameters: dict[str, Any] = field(default_factory=dict)
    as_of: datetime | None = None
    total_items: int = 0
    succeeded_items: int = 0
    failed_items: int = 0
    skipped_items: int = 0
    submitted_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    submitted_by: UUID | None = None
    error_summary: str | None = None


@dataclass(frozen=True)
class BatchItemResult:
    item_index: int
    item_key: str
    status: BatchItemStatus
    error_code: str | None = None
    error_message: str | None = None
    result_data: dict[str, Any] | None = None
    duration_ms: int = 0


@dataclass(frozen=True)
class BatchRunResult:
    job_id: UUID
    status: BatchJobStatus
    as_of: datetime
    total_items: int
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    item_results: tuple[BatchItemResult, ...] = ()

    @property
    def not_started(self) -> int:
        """Cases never reached because the run was stopped."""
        return self.total_items - self.succeeded - self.failed - self.skipped


@dataclass(frozen=True)
class JobSchedule:
    schedule_id: UUID
    job_name: str
    task_type: str
    frequency: ScheduleFrequency
    parameters: dict[str, Any] = field(default_factory=dict)
    cron_expression: str | None = None
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_run_status: BatchJobStatus | None = None
    is_active: bool = True


@dataclass(frozen=True)
class ReconciliationReport:
    """Summary of one ``reconcile_all`` pass.

    ``total_incremental_charge`` is keyed by currency code; KES and USD
    increments are never added together.
    """

    job_id: UUID
    status: BatchJobStatus
    as_of: datetime
    processed: int
    failed: int
    skipped: int
    not_started: int = 0
    audit_failures: int = 0
    total_incremental_charge: dict[str, Decimal] = field(default_factory=dict)
    failed_cases: tuple[str, ...] = ()
