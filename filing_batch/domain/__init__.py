"""
filing_batch.domain -- pure types and schedule evaluation.

ZERO I/O.  All types are frozen dataclasses.
"""

from filing_batch.domain.schedule import (
    CronError,
    CronExpression,
    compute_next_run,
    should_fire,
)
from filing_batch.domain.types import (
    BatchItemResult,
    BatchItemStatus,
    BatchJob,
    BatchJobStatus,
    BatchRunResult,
    JobSchedule,
    ScheduleFrequency,
)

__all__ = [
    "BatchItemResult",
    "BatchItemStatus",
    "BatchJob",
    "BatchJobStatus",
    "BatchRunResult",
    "CronError",
    "CronExpression",
    "JobSchedule",
    "ScheduleFrequency",
    "compute_next_run",
    "should_fire",
]
