"""
BatchTask protocol, supporting types, and TaskRegistry.

Contract:
    ``BatchTask`` defines the interface every batch task implements.
    ``TaskRegistry`` stores registered tasks keyed by ``task_type``.

Architecture:
    filing_batch/tasks.  Imports only filing_batch.domain and the kernel's
    exception hierarchy.

Invariants enforced:
    - One task per ``task_type`` string.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy.orm import Session

from filing_batch.domain.types import BatchItemStatus
from filing_kernel.exceptions import TaskNotRegisteredError


@dataclass(frozen=True)
class BatchItemInput:
    """One unit of work produced by ``BatchTask.prepare_items()``."""

    item_index: int
    item_key: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchTaskResult:
    status: BatchItemStatus
    result_data: dict[str, Any] | None = None
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def succeeded(cls, **result_data: Any) -> BatchTaskResult:
        return cls(status=BatchItemStatus.SUCCEEDED, result_data=result_data or None)

    @classmethod
    def skipped(cls, reason: str | None) -> BatchTaskResult:
        return cls(
            status=BatchItemStatus.SKIPPED,
            result_data={"reason": reason} if reason else None,
        )


@runtime_checkable
class BatchTask(Protocol):
    """Interface for batch task implementations.

    Contract:
        - ``task_type``: unique key registered in TaskRegistry.
        - ``prepare_items()``: selects candidates; returns an immutable tuple.
          Raising here fails the whole job.
        - ``execute_item()``: processes ONE item inside a SAVEPOINT.
          Re-checks its guard and returns SKIPPED when it no longer holds.

    Non-goals:
        - Does NOT manage transactions.  The executor owns the SAVEPOINTs.
    """

    @property
    def task_type(self) -> str: ...

    @property
    def description(self) -> str: ...

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]: ...

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult: ...


class TaskRegistry:
    """Maps task_type strings to BatchTask implementations."""

    def __init__(self) -> None:
        self._tasks: dict[str, BatchTask] = {}

    def register(self, task: BatchTask) -> None:
        """
        Raises:
            ValueError: A task with the same task_type is already registered.
        """
        if task.task_type in self._tasks:
            raise ValueError(f"Task type '{task.task_type}' is already registered")
        self._tasks[task.task_type] = task

    def get(self, task_type: str) -> BatchTask:
        try:
            return self._tasks[task_type]
        except KeyError:
            raise TaskNotRegisteredError(task_type, self.list_tasks()) from None

    def list_tasks(self) -> tuple[str, ...]:
        return tuple(sorted(self._tasks))

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_type: str) -> bool:
        return task_type in self._tasks
