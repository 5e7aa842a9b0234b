"""
BatchOrchestrator -- DI container for the batch processing system.

Contract:
    Wires the TaskRegistry with the obligation tasks, creates
    BatchExecutor and optionally BatchScheduler.  Single place where all
    batch dependencies are composed.

Invariants enforced:
    - Every task, executor and scheduler receives the same Clock.
    - Nothing in filing_kernel imports from filing_batch.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from filing_kernel.domain.clock import DEFAULT_TIMEZONE, Clock, SystemClock
from filing_kernel.domain.dtos import SYSTEM_ACTOR
from filing_kernel.domain.ports import NotificationSink, RegistryLookup, ReviewerDirectory
from filing_kernel.logging_config import get_logger
from filing_kernel.services.notifications import NotificationDispatcher

from filing_batch.services.executor import BatchExecutor
from filing_batch.services.scheduler import BatchScheduler
from filing_batch.tasks.base import TaskRegistry
from filing_batch.tasks.obligation_tasks import ObligationTaskContext, obligation_tasks

if TYPE_CHECKING:
    from filing_config.schema import EngineConfig

logger = get_logger("batch.orchestrator")


def build_task_registry(
    config: EngineConfig | None = None,
    clock: Clock | None = None,
    registry_lookup: RegistryLookup | None = None,
    directory: ReviewerDirectory | None = None,
    sinks: Iterable[NotificationSink] = (),
) -> TaskRegistry:
    """Create a TaskRegistry loaded with the obligation lifecycle tasks."""
    if config is None:
        context = ObligationTaskContext(
            clock=clock or SystemClock(),
            registry=registry_lookup,
            directory=directory,
            notifier=NotificationDispatcher(sinks),
        )
    else:
        context = ObligationTaskContext(
            clock=clock or SystemClock(),
            registry=registry_lookup,
            directory=directory,
            notifier=NotificationDispatcher(sinks),
            tz_name=config.timezone,
            cooling_off_months=config.cooling_off_months,
            accounts_due_months=config.accounts_due_months,
            reviewer_role=config.reviewer_role,
            filing_months_table=config.filing_months,
        )

    registry = TaskRegistry()
    for task in obligation_tasks(context):
        registry.register(task)
    return registry


class BatchOrchestrator:
    """DI container for the batch processing system.

    Non-goals:
        - Does NOT start the scheduler automatically; the caller decides.
        - Does NOT manage session lifecycle; the caller controls commits.
    """

    def __init__(
        self,
        session: Session,
        task_registry: TaskRegistry,
        clock: Clock,
        actor_id: str = SYSTEM_ACTOR.actor_id,
        tz_name: str = DEFAULT_TIMEZONE,
    ):
        self._session = session
        self._task_registry = task_registry
        self._clock = clock
        self._actor_id = actor_id
        self._tz_name = tz_name

    @classmethod
    def from_session(
        cls,
        session: Session,
        clock: Clock | None = None,
        actor_id: str = SYSTEM_ACTOR.actor_id,
        task_registry: TaskRegistry | None = None,
    ) -> BatchOrchestrator:
        """Create an orchestrator with default settings and no collaborators."""
        effective_clock = clock or SystemClock()
        registry = task_registry if task_registry is not None else build_task_registry(
            clock=effective_clock
        )
        return cls(session=session, task_registry=registry, clock=effective_clock, actor_id=actor_id)

    @classmethod
    def from_config(
        cls,
        session: Session,
        config: EngineConfig,
        clock: Clock | None = None,
        registry_lookup: RegistryLookup | None = None,
        directory: ReviewerDirectory | None = None,
        sinks: Iterable[NotificationSink] = (),
        actor_id: str = SYSTEM_ACTOR.actor_id,
    ) -> BatchOrchestrator:
        effective_clock = clock or SystemClock()
        registry = build_task_registry(
            config, effective_clock, registry_lookup, directory, sinks
        )
        logger.info(
            "batch_orchestrator_configured",
            extra={"tasks": registry.list_tasks(), "config_checksum": config.checksum},
        )
        return cls(
            session=session,
            task_registry=registry,
            clock=effective_clock,
            actor_id=actor_id,
            tz_name=config.timezone,
        )

    def create_executor(self, session: Session | None = None) -> BatchExecutor:
        return BatchExecutor(
            session=session or self._session,
            task_registry=self._task_registry,
            clock=self._clock,
        )

    def create_scheduler(
        self,
        session_factory: Callable[[], Session],
        tick_interval_seconds: int = 60,
    ) -> BatchScheduler:
        """Create a BatchScheduler that opens a fresh session per tick."""
        clock = self._clock
        registry = self._task_registry

        def executor_factory(session: Session) -> BatchExecutor:
            return BatchExecutor(session=session, task_registry=registry, clock=clock)

        return BatchScheduler(
            session_factory=session_factory,
            executor_factory=executor_factory,
            clock=clock,
            actor_id=self._actor_id,
            tick_interval_seconds=tick_interval_seconds,
            tz_name=self._tz_name,
        )

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def task_registry(self) -> TaskRegistry:
        return self._task_registry

    @property
    def actor_id(self) -> str:
        return self._actor_id
