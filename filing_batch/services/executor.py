"""
BatchExecutor -- SAVEPOINT-per-item batch execution engine.

Contract:
    Orchestrates the batch job lifecycle: submit (with idempotency),
    execute (SAVEPOINT per item, interruptible between items), cancel,
    query.

Architecture: filing_batch/services.  Imports from filing_batch.domain,
    filing_batch.models, filing_batch.tasks and the kernel.

Invariants enforced:
    - Each item runs in its own SAVEPOINT; one failure does not abort the
      batch, and its BatchItemModel row is written outside the SAVEPOINT.
    - A failure in ``prepare_items`` fails the whole job before any item.
    - ``idempotency_key`` is unique across jobs.
    - At most one RUNNING job per task_type.
    - All timestamps come from the injected Clock.
    - The stop signal is checked before each item; a stopped job ends
      INTERRUPTED with the items processed so far.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from filing_kernel.domain.clock import Clock, SystemClock
from filing_kernel.exceptions import (
    BatchAlreadyRunningError,
    BatchIdempotencyError,
    BatchJobNotFoundError,
    FilingKernelError,
    TaskNotRegisteredError,
)
from filing_kernel.logging_config import LogContext, get_logger

from filing_batch.domain.types import (
    BatchItemResult,
    BatchItemStatus,
    BatchJob,
    BatchJobStatus,
    BatchRunResult,
)
from filing_batch.models.batch import BatchItemModel, BatchJobModel
from filing_batch.tasks.base import BatchItemInput, BatchTask, BatchTaskResult, TaskRegistry

logger = get_logger("batch.executor")

UNHANDLED_EXCEPTION = "UNHANDLED_EXCEPTION"


class BatchExecutor:
    """Batch execution engine with SAVEPOINT-per-item isolation.

    Non-goals:
        - Does NOT call ``session.commit()``; the caller controls boundaries.
        - Does NOT manage background threads; that is the scheduler's job.
    """

    def __init__(
        self,
        session: Session,
        task_registry: TaskRegistry,
        clock: Clock | None = None,
    ):
        self._session = session
        self._task_registry = task_registry
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Submit
    # -------------------------------------------------------------------------

    def submit_job(
        self,
        job_name: str,
        task_type: str,
        idempotency_key: str,
        actor_id: str,
        parameters: dict[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> BatchJob:
        """Create a new PENDING batch job.

        Raises:
            TaskNotRegisteredError: task_type is not in the registry.
            BatchIdempotencyError: idempotency_key is already used.
        """
        if task_type not in self._task_registry:
            raise TaskNotRegisteredError(task_type, self._task_registry.list_tasks())

        existing = self._session.execute(
            select(BatchJobModel).where(BatchJobModel.idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        if existing is not None:
            raise BatchIdempotencyError(idempotency_key, str(existing.id))

        now = self._clock.now_utc()
        dto = BatchJob(
            job_id=uuid4(),
            job_name=job_name,
            task_type=task_type,
            status=BatchJobStatus.PENDING,
            idempotency_key=idempotency_key,
            parameters=parameters or {},
            created_at=now,
            created_by=actor_id,
            correlation_id=correlation_id,
        )

        model = BatchJobModel.from_dto(dto, created_by_id=actor_id)
        model.created_at = now
        self._session.add(model)
        self._session.flush()

        logger.info(
            "batch_job_submitted",
            extra={
                "job_id": str(dto.job_id),
                "job_name": job_name,
                "task_type": task_type,
                "idempotency_key": idempotency_key,
            },
        )
        return dto

    def run_now(
        self,
        job_name: str,
        task_type: str,
        actor_id: str,
        parameters: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> BatchRunResult:
        """Submit and execute immediately (manual trigger)."""
        key = idempotency_key or f"{job_name}:manual:{self._clock.now_utc().isoformat()}:{uuid4().hex[:8]}"
        job = self.submit_job(job_name, task_type, key, actor_id, parameters)
        return self.execute_job(job.job_id, actor_id, should_stop=should_stop)

    # -------------------------------------------------------------------------
    # Execute
    # -------------------------------------------------------------------------

    def execute_job(
        self,
        job_id: UUID,
        actor_id: str,
        should_stop: Callable[[], bool] | None = None,
    ) -> BatchRunResult:
        """Execute a batch job with SAVEPOINT-per-item isolation.

        Raises:
            BatchJobNotFoundError: job_id does not exist.
            BatchAlreadyRunningError: The job is not PENDING, or another
                job of the same task_type is RUNNING.
            TaskNotRegisteredError: task_type is not registered.
        """
        start_time = time.monotonic()

        job_model = self._session.execute(
            select(BatchJobModel).where(BatchJobModel.id == job_id).with_for_update()
        ).scalar_one_or_none()
        if job_model is None:
            raise BatchJobNotFoundError(str(job_id))
        if job_model.status != BatchJobStatus.PENDING.value:
            raise BatchAlreadyRunningError(job_model.job_name, str(job_id), job_model.status)

        running = self._session.execute(
            select(BatchJobModel.id).where(
                BatchJobModel.task_type == job_model.task_type,
                BatchJobModel.status == BatchJobStatus.RUNNING.value,
                BatchJobModel.id != job_id,
            )
        ).first()
        if running is not None:
            raise BatchAlreadyRunningError(
                job_model.job_name, str(running[0]), BatchJobStatus.RUNNING.value
            )

        task = self._task_registry.get(job_model.task_type)

        with LogContext.bind(job_id=str(job_id), correlation_id=job_model.correlation_id):
            return self._run(job_model, task, actor_id, should_stop, start_time)

    def _run(
        self,
        job_model: BatchJobModel,
        task: BatchTask,
        actor_id: str,
        should_stop: Callable[[], bool] | None,
        start_time: float,
    ) -> BatchRunResult:
        now = self._clock.now_utc()
        parameters = job_model.parameters or {}
        job_model.status = BatchJobStatus.RUNNING.value
        job_model.started_at = now
        self._session.flush()
        logger.info(
            "batch_job_started",
            extra={"task_type": job_model.task_type, "as_of": now},
        )

        try:
            with self._session.begin_nested():
                items = task.prepare_items(
                    parameters=parameters,
                    session=self._session,
                    as_of=now,
                )
        except Exception as exc:
            logger.error(
                "batch_prepare_failed",
                extra={"task_type": job_model.task_type},
                exc_info=True,
            )
            return self._fail_job(job_model, f"prepare_items failed: {exc}", start_time)

        job_model.total_items = len(items)
        self._session.flush()

        succeeded = failed = skipped = 0
        interrupted = False
        item_results: list[BatchItemResult] = []

        for batch_item in items:
            if should_stop is not None and should_stop():
                interrupted = True
                logger.warning(
                    "batch_job_interrupted",
                    extra={
                        "processed": len(item_results),
                        "remaining": len(items) - len(item_results),
                    },
                )
                break

            item_result = self._execute_item(task, batch_item, parameters, now)
            if item_result.status is BatchItemStatus.SUCCEEDED:
                succeeded += 1
            elif item_result.status is BatchItemStatus.SKIPPED:
                skipped += 1
            else:
                failed += 1
            item_results.append(item_result)

            item_model = BatchItemModel.from_dto(
                item_result, job_id=job_model.id, created_by_id=actor_id,
            )
            item_model.created_at = self._clock.now_utc()
            self._session.add(item_model)

        job_model.succeeded_items = succeeded
        job_model.failed_items = failed
        job_model.skipped_items = skipped

        if interrupted:
            status = BatchJobStatus.INTERRUPTED
        elif failed == 0:
            status = BatchJobStatus.COMPLETED
        elif succeeded == 0 and skipped == 0:
            status = BatchJobStatus.FAILED
        else:
            status = BatchJobStatus.PARTIALLY_COMPLETED
        job_model.status = status.value

        completed_at = self._clock.now_utc()
        job_model.completed_at = completed_at
        if failed > 0:
            job_model.error_summary = f"{failed} item(s) failed"
        if interrupted:
            job_model.error_summary = (
                f"Interrupted after {len(item_results)} of {len(items)} item(s)"
            )
        self._session.flush()

        total_duration = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "batch_job_finished",
            extra={
                "task_type": job_model.task_type,
                "status": status.value,
                "total_items": len(items),
                "succeeded": succeeded,
                "failed": failed,
                "skipped": skipped,
                "duration_ms": total_duration,
            },
        )

        return BatchRunResult(
            job_id=job_model.id,
            status=status,
            total_items=len(items),
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
            item_results=tuple(item_results),
            started_at=job_model.started_at,
            completed_at=completed_at,
            duration_ms=total_duration,
            correlation_id=job_model.correlation_id,
            error_summary=job_model.error_summary,
        )

    def _execute_item(
        self,
        task: BatchTask,
        batch_item: BatchItemInput,
        parameters: dict[str, Any],
        as_of,
    ) -> BatchItemResult:
        item_start = time.monotonic()
        item_started_at = self._clock.now_utc()

        savepoint = self._session.begin_nested()
        try:
            result = task.execute_item(
                item=batch_item,
                parameters=parameters,
                session=self._session,
                as_of=as_of,
            )
            if result.status is BatchItemStatus.SUCCEEDED:
                savepoint.commit()
            else:
                savepoint.rollback()
        except FilingKernelError as exc:
            savepoint.rollback()
            logger.warning(
                "batch_item_failed",
                extra={"item_key": batch_item.item_key, "error_code": exc.code},
            )
            result = BatchTaskResult(
                status=BatchItemStatus.FAILED,
                error_code=exc.code,
                error_message=str(exc),
            )
        except Exception as exc:
            savepoint.rollback()
            logger.error(
                "batch_item_failed",
                extra={"item_key": batch_item.item_key, "error_code": UNHANDLED_EXCEPTION},
                exc_info=True,
            )
            result = BatchTaskResult(
                status=BatchItemStatus.FAILED,
                error_code=UNHANDLED_EXCEPTION,
                error_message=str(exc),
            )

        return BatchItemResult(
            item_index=batch_item.item_index,
            item_key=batch_item.item_key,
            status=result.status,
            error_code=result.error_code,
            error_message=result.error_message,
            result_data=result.result_data,
            duration_ms=int((time.monotonic() - item_start) * 1000),
            started_at=item_started_at,
            completed_at=self._clock.now_utc(),
        )

    # -------------------------------------------------------------------------
    # Cancel
    # -------------------------------------------------------------------------

    def cancel_job(self, job_id: UUID, reason: str, actor_id: str) -> BatchJob:
        """Cancel a PENDING job.

        Raises:
            BatchJobNotFoundError: job_id does not exist.
            BatchAlreadyRunningError: The job has already started or finished.
        """
        job_model = self._session.execute(
            select(BatchJobModel).where(BatchJobModel.id == job_id).with_for_update()
        ).scalar_one_or_none()
        if job_model is None:
            raise BatchJobNotFoundError(str(job_id))
        if job_model.status != BatchJobStatus.PENDING.value:
            raise BatchAlreadyRunningError(job_model.job_name, str(job_id), job_model.status)

        job_model.status = BatchJobStatus.CANCELLED.value
        job_model.completed_at = self._clock.now_utc()
        job_model.error_summary = f"Cancelled: {reason}"
        job_model.updated_by_id = actor_id
        self._session.flush()

        logger.info(
            "batch_job_cancelled",
            extra={"job_id": str(job_id), "reason": reason, "actor_id": actor_id},
        )
        return job_model.to_dto()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_job(self, job_id: UUID) -> BatchJob:
        """
        Raises:
            BatchJobNotFoundError: job_id does not exist.
        """
        model = self._session.get(BatchJobModel, job_id)
        if model is None:
            raise BatchJobNotFoundError(str(job_id))
        return model.to_dto()

    def get_job_items(self, job_id: UUID) -> tuple[BatchItemResult, ...]:
        models = self._session.execute(
            select(BatchItemModel)
            .where(BatchItemModel.job_id == job_id)
            .order_by(BatchItemModel.item_index)
        ).scalars().all()
        return tuple(m.to_dto() for m in models)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _fail_job(
        self,
        job_model: BatchJobModel,
        error_summary: str,
        start_time: float,
    ) -> BatchRunResult:
        job_model.status = BatchJobStatus.FAILED.value
        job_model.completed_at = self._clock.now_utc()
        job_model.error_summary = error_summary
        self._session.flush()

        return BatchRunResult(
            job_id=job_model.id,
            status=BatchJobStatus.FAILED,
            total_items=0,
            succeeded=0,
            failed=0,
            skipped=0,
            started_at=job_model.started_at,
            completed_at=job_model.completed_at,
            duration_ms=int((time.monotonic() - start_time) * 1000),
            correlation_id=job_model.correlation_id,
            error_summary=error_summary,
        )
