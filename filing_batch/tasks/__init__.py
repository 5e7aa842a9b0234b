from filing_batch.tasks.base import BatchItemInput, BatchTask, BatchTaskResult, TaskRegistry
from filing_batch.tasks.obligation_tasks import (
    AutoAssignTask,
    ObligationTaskContext,
    PromoteAwaitingTask,
    RolloverTask,
    obligation_tasks,
)

__all__ = [
    "AutoAssignTask",
    "BatchItemInput",
    "BatchTask",
    "BatchTaskResult",
    "ObligationTaskContext",
    "PromoteAwaitingTask",
    "RolloverTask",
    "TaskRegistry",
    "obligation_tasks",
]
