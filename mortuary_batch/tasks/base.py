"""
What a batch task looks like, and where tasks are looked up.

A task lists the items of one run (``prepare_items``) and processes them
one at a time (``execute_item``).  The executor owns the transaction: each
``execute_item`` call runs inside its own SAVEPOINT, and a task signals the
outcome through the returned ``BatchTaskResult`` rather than by committing
or rolling back itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy.orm import Session

from mortuary_batch.domain.types import BatchItemStatus


@dataclass(frozen=True)
class BatchItemInput:
    item_index: int
    item_key: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchTaskResult:
    """Outcome of one item.  ``result_data`` is stored as JSON."""

    status: BatchItemStatus
    result_data: dict[str, Any] | None = None
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def ok(cls, **data: Any) -> BatchTaskResult:
        return cls(status=BatchItemStatus.SUCCEEDED, result_data=data or None)

    @classmethod
    def failed(cls, code: str, message: str) -> BatchTaskResult:
        return cls(status=BatchItemStatus.FAILED, error_code=code, error_message=message)

    @classmethod
    def skipped(cls, code: str, message: str | None = None) -> BatchTaskResult:
        return cls(status=BatchItemStatus.SKIPPED, error_code=code, error_message=message)


@runtime_checkable
class BatchTask(Protocol):

    @property
    def task_type(self) -> str: ...

    @property
    def description(self) -> str: ...

    def prepare_items(
        self, parameters: dict[str, Any], session: Session, as_of: datetime
    ) -> tuple[BatchItemInput, ...]: ...

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult: ...


class TaskRegistry:
    """Tasks keyed by ``task_type``.

    ``register`` refuses a second task with the same type; ``get`` raises
    ``KeyError`` naming the registered types.
    """

    def __init__(self, *tasks: BatchTask) -> None:
        self._tasks: dict[str, BatchTask] = {}
        for task in tasks:
            self.register(task)

    def register(self, task: BatchTask) -> None:
        if task.task_type in self._tasks:
            raise ValueError(f"task type {task.task_type!r} is already registered")
        self._tasks[task.task_type] = task

    def get(self, task_type: str) -> BatchTask:
        task = self._tasks.get(task_type)
        if task is None:
            raise KeyError(f"no task registered for {task_type!r}; known: {self.list_tasks()}")
        return task

    def list_tasks(self) -> tuple[str, ...]:
        return tuple(sorted(self._tasks))

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._tasks
