"""
BatchScheduler -- in-process polling scheduler.

Contract:
    Polls active schedules on a configurable interval, evaluates
    ``should_fire()`` (pure) and submits + executes due jobs via
    ``BatchExecutor``.

Architecture: filing_batch/services.  Uses filing_batch.domain.schedule
    for evaluation and filing_batch.services.executor for execution.

Invariants enforced:
    - All timestamps come from the injected Clock.
    - Schedule times are naive wall-clock times in the configured
      timezone, so "06:00 on the 1st" means 06:00 in that timezone.
    - Each firing is keyed ``schedule-<id>-<YYYYmmdd-HHMM>``; a second
      scheduler process firing the same minute hits the idempotency key.
    - Graceful shutdown: the stop signal is checked between schedules and,
      through the executor, between items.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from filing_kernel.domain.clock import DEFAULT_TIMEZONE, Clock, SystemClock, local_wall_time
from filing_kernel.domain.dtos import SYSTEM_ACTOR
from filing_kernel.logging_config import get_logger

from filing_batch.domain.schedule import compute_next_run, should_fire, validate_cron
from filing_batch.domain.types import ScheduleFrequency
from filing_batch.models.batch import JobScheduleModel
from filing_batch.services.executor import BatchExecutor

if TYPE_CHECKING:
    from filing_config.schema import ScheduleDef

logger = get_logger("batch.scheduler")


class BatchScheduler:
    """In-process polling scheduler for batch job schedules.

    Non-goals:
        - NOT a distributed scheduler (no leader election).
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        executor_factory: Callable[[Session], BatchExecutor],
        clock: Clock | None = None,
        actor_id: str = SYSTEM_ACTOR.actor_id,
        tick_interval_seconds: int = 60,
        tz_name: str = DEFAULT_TIMEZONE,
    ):
        self._session_factory = session_factory
        self._executor_factory = executor_factory
        self._clock = clock or SystemClock()
        self._actor_id = actor_id
        self._tick_interval = tick_interval_seconds
        self._tz_name = tz_name
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> int:
        """Evaluate and fire due schedules.  Returns the number fired."""
        session = self._session_factory()
        try:
            fired = self._evaluate_schedules(session)
            session.commit()
            return fired
        except Exception:
            session.rollback()
            logger.exception("scheduler_tick_failed")
            return 0
        finally:
            session.close()

    def sync_schedules(self, schedule_defs: Iterable[ScheduleDef]) -> int:
        """
        Upsert configured schedules by job name and deactivate the rest.

        A schedule whose frequency or cron expression changed is re-planned
        from now; otherwise its next run is kept.  Returns the number of
        active schedules.
        """
        defs = list(schedule_defs)
        for schedule_def in defs:
            if schedule_def.cron:
                validate_cron(schedule_def.cron)

        now = self._now()
        session = self._session_factory()
        try:
            existing = {
                m.job_name: m
                for m in session.execute(select(JobScheduleModel)).scalars()
            }
            active = 0
            for schedule_def in defs:
                frequency = ScheduleFrequency(schedule_def.frequency)
                model = existing.pop(schedule_def.name, None)
                if model is None:
                    model = JobScheduleModel(
                        job_name=schedule_def.name,
                        created_by_id=self._actor_id,
                    )
                    session.add(model)
                    replan = True
                else:
                    replan = (
                        model.frequency != frequency.value
                        or model.cron_expression != schedule_def.cron
                    )
                    model.updated_by_id = self._actor_id

                model.task_type = schedule_def.task_type
                model.frequency = frequency.value
                model.cron_expression = schedule_def.cron
                model.parameters = dict(schedule_def.parameters) or None
                model.is_active = schedule_def.enabled
                if replan:
                    model.next_run_at = (
                        compute_next_run(frequency, now, schedule_def.cron)
                        if schedule_def.cron
                        else None
                    )
                active += int(schedule_def.enabled)

            for stale in existing.values():
                if stale.is_active:
                    stale.is_active = False
                    stale.updated_by_id = self._actor_id
                    logger.info("schedule_deactivated", extra={"job_name": stale.job_name})

            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info("schedules_synced", extra={"configured": len(defs), "active": active})
        return active

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="batch-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current item to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    def wait(self) -> None:
        """Block until the background thread exits."""
        while self.is_running:
            self._thread.join(timeout=1.0)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _now(self):
        return local_wall_time(self._clock.now(), self._tz_name)

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _evaluate_schedules(self, session: Session) -> int:
        now = self._now()

        schedules = session.execute(
            select(JobScheduleModel)
            .where(JobScheduleModel.is_active.is_(True))
            .order_by(JobScheduleModel.job_name)
        ).scalars().all()

        fired = 0
        for schedule_model in schedules:
            if self._stop_event.is_set():
                break

            if not should_fire(schedule_model.to_dto(), now):
                continue

            try:
                with session.begin_nested():
                    self._fire(session, schedule_model, now)
                fired += 1
            except Exception:
                logger.exception(
                    "schedule_fire_failed",
                    extra={
                        "schedule_id": str(schedule_model.id),
                        "job_name": schedule_model.job_name,
                    },
                )

        return fired

    def _fire(self, session: Session, schedule_model: JobScheduleModel, now) -> None:
        idempotency_key = f"schedule-{schedule_model.id}-{now.strftime('%Y%m%d-%H%M')}"
        executor = self._executor_factory(session)

        job = executor.submit_job(
            job_name=schedule_model.job_name,
            task_type=schedule_model.task_type,
            idempotency_key=idempotency_key,
            actor_id=self._actor_id,
            parameters=schedule_model.parameters or {},
        )
        result = executor.execute_job(
            job.job_id, self._actor_id, should_stop=self._stop_event.is_set
        )

        next_run = compute_next_run(
            ScheduleFrequency(schedule_model.frequency),
            now,
            schedule_model.cron_expression,
        )
        schedule_model.last_run_at = now
        schedule_model.last_run_status = result.status.value
        schedule_model.next_run_at = next_run

        logger.info(
            "schedule_fired",
            extra={
                "schedule_id": str(schedule_model.id),
                "job_name": schedule_model.job_name,
                "job_id": str(job.job_id),
                "status": result.status.value,
                "next_run_at": next_run,
            },
        )
