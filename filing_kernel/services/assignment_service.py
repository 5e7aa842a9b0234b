"""
AssignmentService -- calendar-gated round-robin auto-assignment.

Responsibility:
    Assigns unassigned obligations in their first working stage to the
    eligible reviewer pool, in strict rotation, but only during the
    calendar months their cadence group files in.

Invariants enforced:
    - The reviewer pool is fetched once per run and the cursor starts at
      index 0 every run; nothing is persisted between runs.
    - The cursor advances for every attempted assignment, including ones
      that turn out ineligible or fail.
    - Eligibility is re-checked against the freshly loaded row immediately
      before writing, and the write carries the version just read, so a
      concurrent manual assignment wins cleanly.
    - Each assignment stamps CHASE_STARTED attributed to the reviewer and
      appends one system history entry.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from filing_kernel.domain.assignment import (
    DEFAULT_REVIEWER_ROLE,
    AssignmentCursor,
    auto_assignment_note,
    ineligibility_reason,
)
from filing_kernel.domain.clock import DEFAULT_TIMEZONE, Clock, SystemClock
from filing_kernel.domain.dtos import SYSTEM_ACTOR, Actor, AssignmentOutcome, Reviewer
from filing_kernel.domain.periods import CadenceGroup, filing_months
from filing_kernel.domain.ports import ReviewerDirectory
from filing_kernel.domain.stages import CATALOGS, MilestoneField
from filing_kernel.exceptions import FilingKernelError, ReviewerPoolUnavailableError
from filing_kernel.logging_config import get_logger
from filing_kernel.models.obligation import ObligationModel
from filing_kernel.selectors.obligation_selector import obligation_to_dto
from filing_kernel.services.base import BaseService
from filing_kernel.services.notifications import NotificationDispatcher
from filing_kernel.services.workflow_service import WorkflowService

logger = get_logger("services.assignment")


class AssignmentService(BaseService[ObligationModel]):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        directory: ReviewerDirectory | None = None,
        notifier: NotificationDispatcher | None = None,
        *,
        reviewer_role: str = DEFAULT_REVIEWER_ROLE,
        filing_months_table: Mapping[str, tuple[int, ...]] | None = None,
        tz_name: str = DEFAULT_TIMEZONE,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._directory = directory
        self._role = reviewer_role
        self._table = filing_months_table
        self._tz_name = tz_name
        self._workflow = WorkflowService(session, self._clock, notifier, tz_name=tz_name)

    def load_cursor(self) -> AssignmentCursor:
        """
        Fetch the reviewer pool and start a fresh rotation.

        Raises:
            ReviewerPoolUnavailableError: No directory, a directory failure,
                or nobody active in the role.
        """
        if self._directory is None:
            raise ReviewerPoolUnavailableError(self._role, "no reviewer directory configured")
        try:
            listed = self._directory.list_eligible_reviewers(self._role)
        except Exception as exc:
            raise ReviewerPoolUnavailableError(self._role, str(exc)) from exc
        reviewers = [r for r in listed if r.role == self._role]
        cursor = AssignmentCursor(reviewers, self._role)
        logger.info(
            "reviewer_pool_loaded",
            extra={"role": self._role, "pool_size": len(cursor)},
        )
        return cursor

    def find_eligible(self, today: date | None = None) -> list[UUID]:
        """Ids eligible today, most urgent first."""
        today = today or self._clock.today(self._tz_name)
        first_working = sorted({c.first_working_stage.stage.value for c in CATALOGS.values()})
        rows = self.session.execute(
            select(ObligationModel.id, ObligationModel.cadence_group)
            .where(
                ObligationModel.current_stage.in_(first_working),
                ObligationModel.assigned_reviewer_id.is_(None),
                ObligationModel.is_terminal.is_(False),
            )
            .order_by(ObligationModel.statutory_due_date, ObligationModel.client_id)
        )
        return [
            oid
            for oid, code in rows
            if today.month in filing_months(CadenceGroup.parse(code), self._table)
        ]

    def assign(
        self,
        obligation_id: UUID,
        reviewer: Reviewer,
        today: date | None = None,
    ) -> AssignmentOutcome:
        """Assign one obligation to ``reviewer`` if it is still eligible."""
        today = today or self._clock.today(self._tz_name)
        current = obligation_to_dto(self._workflow.load(obligation_id))
        reason = ineligibility_reason(current, today, self._table)
        if reason is not None:
            logger.info(
                "assignment_skipped",
                extra={"obligation_id": str(obligation_id), "reason": reason},
            )
            return AssignmentOutcome(
                obligation_id=current.obligation_id,
                assigned=False,
                reason=reason,
            )

        self._workflow.record_assignment(
            current.obligation_id,
            reviewer.reviewer_id,
            SYSTEM_ACTOR,
            auto_assignment_note(reviewer, today),
            milestone=MilestoneField.CHASE_STARTED,
            milestone_actor=Actor(reviewer.reviewer_id, reviewer.name),
            expected_version=current.version,
        )
        logger.info(
            "obligation_auto_assigned",
            extra={
                "obligation_id": str(current.obligation_id),
                "reviewer_id": reviewer.reviewer_id,
                "filing_month": f"{today.month}/{today.year}",
            },
        )
        return AssignmentOutcome(
            obligation_id=current.obligation_id,
            assigned=True,
            reviewer_id=reviewer.reviewer_id,
        )

    def run(self, today: date | None = None) -> list[AssignmentOutcome]:
        """
        One scheduled pass.  Failures on individual obligations are logged
        and reported; the rotation still advances past them.
        """
        today = today or self._clock.today(self._tz_name)
        cursor = self.load_cursor()
        outcomes: list[AssignmentOutcome] = []
        for obligation_id in self.find_eligible(today):
            reviewer = cursor.next()
            try:
                outcomes.append(self.assign(obligation_id, reviewer, today))
            except FilingKernelError as exc:
                logger.warning(
                    "assignment_failed",
                    extra={
                        "obligation_id": str(obligation_id),
                        "reviewer_id": reviewer.reviewer_id,
                        "error_code": exc.code,
                    },
                )
                outcomes.append(
                    AssignmentOutcome(
                        obligation_id=obligation_id,
                        assigned=False,
                        reviewer_id=reviewer.reviewer_id,
                        reason=exc.code,
                    )
                )
        return outcomes

    def assign_on_demand(self, obligation_id: UUID, today: date | None = None) -> AssignmentOutcome:
        """Apply the scheduled filter to one instance, with a fresh cursor."""
        cursor = self.load_cursor()
        return self.assign(obligation_id, cursor.next(), today)
