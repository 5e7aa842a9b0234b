"""
Batch tasks: obligation lifecycle (rollover, promotion, auto-assignment).

Each task is a thin adapter over a kernel service.  ``prepare_items``
scans with the service's finder; ``execute_item`` calls the service's
single-instance operation, which re-checks its own guard against the
freshly loaded row and reports SKIPPED when the guard no longer holds.

The business date of a run is ``as_of`` taken in the configured timezone.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from filing_batch.tasks.base import BatchItemInput, BatchTaskResult
from filing_kernel.domain.assignment import DEFAULT_REVIEWER_ROLE
from filing_kernel.domain.clock import DEFAULT_TIMEZONE, Clock, SystemClock, local_date
from filing_kernel.domain.dtos import Reviewer
from filing_kernel.domain.periods import DEFAULT_ACCOUNTS_DUE_MONTHS
from filing_kernel.domain.ports import RegistryLookup, ReviewerDirectory
from filing_kernel.services.assignment_service import AssignmentService
from filing_kernel.services.notifications import NotificationDispatcher
from filing_kernel.services.promotion_service import PromotionService
from filing_kernel.services.rollover_service import DEFAULT_COOLING_OFF_MONTHS, RolloverService


@dataclass(frozen=True)
class ObligationTaskContext:
    """Collaborators and settings shared by the obligation tasks."""

    clock: Clock = field(default_factory=SystemClock)
    registry: RegistryLookup | None = None
    directory: ReviewerDirectory | None = None
    notifier: NotificationDispatcher | None = None
    tz_name: str = DEFAULT_TIMEZONE
    cooling_off_months: int = DEFAULT_COOLING_OFF_MONTHS
    accounts_due_months: int = DEFAULT_ACCOUNTS_DUE_MONTHS
    reviewer_role: str = DEFAULT_REVIEWER_ROLE
    filing_months_table: Mapping[str, tuple[int, ...]] | None = None


def _obligation_items(ids: list[UUID]) -> tuple[BatchItemInput, ...]:
    return tuple(
        BatchItemInput(
            item_index=i,
            item_key=str(oid),
            payload={"obligation_id": str(oid)},
        )
        for i, oid in enumerate(ids)
    )


class RolloverTask:
    """Create the next period's instance for filed obligations past cooling-off."""

    def __init__(self, context: ObligationTaskContext):
        self._ctx = context

    @property
    def task_type(self) -> str:
        return "obligations.rollover"

    @property
    def description(self) -> str:
        return "Roll filed obligations over into their next period"

    def _service(self, session: Session) -> RolloverService:
        return RolloverService(
            session,
            self._ctx.clock,
            self._ctx.registry,
            self._ctx.notifier,
            cooling_off_months=self._ctx.cooling_off_months,
            accounts_due_months=self._ctx.accounts_due_months,
            tz_name=self._ctx.tz_name,
        )

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        return _obligation_items(self._service(session).find_candidates(as_of))

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        outcome = self._service(session).roll_over(UUID(item.payload["obligation_id"]), as_of)
        if outcome.created is None:
            return BatchTaskResult.skipped(outcome.reason)
        return BatchTaskResult.succeeded(
            new_obligation_id=str(outcome.created.obligation_id),
            period_start=outcome.created.period_start.isoformat(),
            period_end=outcome.created.period_end.isoformat(),
            used_registry=outcome.used_registry,
        )


class PromoteAwaitingTask:
    """Move awaiting instances into their first working stage once the period has ended."""

    def __init__(self, context: ObligationTaskContext):
        self._ctx = context

    @property
    def task_type(self) -> str:
        return "obligations.promote_awaiting"

    @property
    def description(self) -> str:
        return "Promote awaiting obligations whose period has ended"

    def _service(self, session: Session) -> PromotionService:
        return PromotionService(
            session, self._ctx.clock, self._ctx.notifier, tz_name=self._ctx.tz_name
        )

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        today = local_date(as_of, self._ctx.tz_name)
        return _obligation_items(self._service(session).find_awaiting_due(today))

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        today = local_date(as_of, self._ctx.tz_name)
        outcome = self._service(session).promote(UUID(item.payload["obligation_id"]), today)
        if not outcome.promoted:
            return BatchTaskResult.skipped(outcome.reason)
        return BatchTaskResult.succeeded(obligation_id=str(outcome.obligation_id))


class AutoAssignTask:
    """
    Round-robin assignment of unassigned first-stage obligations.

    The reviewer for each item is chosen in ``prepare_items`` from a cursor
    built for this run, so the rotation is fixed before any item executes
    and skipped or failed items still consume their turn.  An empty or
    unreachable reviewer pool fails the whole job.
    """

    def __init__(self, context: ObligationTaskContext):
        self._ctx = context

    @property
    def task_type(self) -> str:
        return "obligations.auto_assign"

    @property
    def description(self) -> str:
        return "Assign obligations to reviewers in rotation during their filing month"

    def _service(self, session: Session) -> AssignmentService:
        return AssignmentService(
            session,
            self._ctx.clock,
            self._ctx.directory,
            self._ctx.notifier,
            reviewer_role=self._ctx.reviewer_role,
            filing_months_table=self._ctx.filing_months_table,
            tz_name=self._ctx.tz_name,
        )

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        service = self._service(session)
        cursor = service.load_cursor()
        items = []
        for i, oid in enumerate(service.find_eligible(local_date(as_of, self._ctx.tz_name))):
            reviewer = cursor.next()
            items.append(
                BatchItemInput(
                    item_index=i,
                    item_key=str(oid),
                    payload={
                        "obligation_id": str(oid),
                        "reviewer_id": reviewer.reviewer_id,
                        "reviewer_name": reviewer.name,
                        "reviewer_role": reviewer.role,
                    },
                )
            )
        return tuple(items)

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        payload = item.payload
        reviewer = Reviewer(
            reviewer_id=payload["reviewer_id"],
            name=payload["reviewer_name"],
            role=payload["reviewer_role"],
        )
        outcome = self._service(session).assign(
            UUID(payload["obligation_id"]),
            reviewer,
            local_date(as_of, self._ctx.tz_name),
        )
        if not outcome.assigned:
            return BatchTaskResult.skipped(outcome.reason)
        return BatchTaskResult.succeeded(
            obligation_id=str(outcome.obligation_id),
            reviewer_id=outcome.reviewer_id,
        )


def obligation_tasks(context: ObligationTaskContext) -> tuple[RolloverTask, PromoteAwaitingTask, AutoAssignTask]:
    return (RolloverTask(context), PromoteAwaitingTask(context), AutoAssignTask(context))
