from filing_batch.services.executor import BatchExecutor
from filing_batch.services.scheduler import BatchScheduler

__all__ = ["BatchExecutor", "BatchScheduler"]
