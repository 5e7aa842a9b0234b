"""
filing_batch.domain.types -- frozen DTOs for batch jobs and schedules.

ZERO I/O.  Status fields are str-enums so they persist as plain strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Status enums
# =============================================================================


class BatchJobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"  # Every item succeeded or was skipped
    PARTIALLY_COMPLETED = "partially_completed"  # Some items failed
    FAILED = "failed"  # prepare_items failed, or every item failed
    INTERRUPTED = "interrupted"  # Stop requested between items
    CANCELLED = "cancelled"

    @property
    def is_finished(self) -> bool:
        return self not in (BatchJobStatus.PENDING, BatchJobStatus.RUNNING)


class BatchItemStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # Guard no longer held when the item ran


class ScheduleFrequency(str, Enum):
    ONCE = "once"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ON_DEMAND = "on_demand"  # Manual trigger only


# =============================================================================
# Job DTOs
# =============================================================================


@dataclass(frozen=True)
class BatchJob:
    """Snapshot of a batch job.  ``idempotency_key`` is unique across jobs."""

    job_id: UUID
    job_name: str
    task_type: str
    status: BatchJobStatus
    idempotency_key: str
    parameters: dict[str, Any] = field(default_factory=dict)
    total_items: int = 0
    succeeded_items: int = 0
    failed_items: int = 0
    skipped_items: int = 0
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_by: str | None = None
    correlation_id: str | None = None
    error_summary: str | None = None


@dataclass(frozen=True)
class BatchItemResult:
    """Outcome of one item; each item runs in its own SAVEPOINT."""

    item_index: int
    item_key: str
    status: BatchItemStatus
    error_code: str | None = None
    error_message: str | None = None
    result_data: dict[str, Any] | None = None
    duration_ms: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class BatchRunResult:
    job_id: UUID
    status: BatchJobStatus
    total_items: int
    succeeded: int
    failed: int
    skipped: int
    item_results: tuple[BatchItemResult, ...] = ()
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0
    correlation_id: str | None = None
    error_summary: str | None = None

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed + self.skipped


# =============================================================================
# Schedule DTOs
# =============================================================================


@dataclass(frozen=True)
class JobSchedule:
    """A recurring job.  ``job_name`` identifies the schedule."""

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
