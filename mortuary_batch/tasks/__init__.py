"""
mortuary_batch.tasks -- Task protocol, registry, and the billing tasks.

base.py imports nothing from the kernel; reconciliation_tasks.py wraps
the kernel's ReconciliationService.
"""

from mortuary_batch.tasks.base import (
    BatchItemInput,
    BatchTask,
    BatchTaskResult,
    TaskRegistry,
)

__all__ = [
    "BatchItemInput",
    "BatchTask",
    "BatchTaskResult",
    "TaskRegistry",
]
