"""
mortuary_batch.domain -- Pure types and schedule evaluation.

ZERO I/O.  All types are frozen dataclasses.
"""

from mortuary_batch.domain.types import (
    BatchItemResult,
    BatchItemStatus,
    BatchJob,
    BatchJobStatus,
    BatchRunResult,
    JobSchedule,
    ReconciliationReport,
    ScheduleFrequency,
)

__all__ = [
    "BatchItemResult",
    "BatchItemStatus",
    "BatchJob",
    "BatchJobStatus",
    "BatchRunResult",
    "JobSchedule",
    "ReconciliationReport",
    "ScheduleFrequency",
]
