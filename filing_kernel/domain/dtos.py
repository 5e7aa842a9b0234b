"""
Frozen DTOs crossing the service boundary.

Services return these, never ORM entities, so callers cannot mutate
persistent state behind the workflow's back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from filing_kernel.domain.periods import CadenceGroup
from filing_kernel.domain.stages import MilestoneField, ObligationKind, Stage

if TYPE_CHECKING:
    from filing_kernel.domain.due_dates import DueDateState


@dataclass(frozen=True)
class Actor:
    """Who performed an action: a staff user id or the system."""

    actor_id: str
    name: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.actor_id


SYSTEM_ACTOR = Actor(actor_id="system", name="System")


@dataclass(frozen=True)
class Reviewer:
    """A staff member eligible to be assigned obligations."""

    reviewer_id: str
    name: str
    role: str
    is_active: bool = True


@dataclass(frozen=True)
class Milestone:
    field: MilestoneField
    stamped_at: datetime
    actor_id: str
    actor_name: str | None = None


@dataclass(frozen=True)
class ObligationInfo:
    """Read-only snapshot of one obligation instance."""

    obligation_id: UUID
    client_id: str
    kind: ObligationKind
    cadence_group: CadenceGroup
    period_start: date
    period_end: date
    statutory_due_date: date
    current_stage: Stage
    is_terminal: bool
    version: int
    client_ref: str | None = None
    assigned_reviewer_id: str | None = None
    completed_at: datetime | None = None
    confirmation_statement_due: date | None = None
    milestones: dict[MilestoneField, Milestone] = field(default_factory=dict)
    due_date_state: DueDateState | None = None

    def milestone(self, milestone_field: MilestoneField) -> Milestone | None:
        return self.milestones.get(milestone_field)


@dataclass(frozen=True)
class HistoryEntryInfo:
    entry_id: UUID
    obligation_id: UUID
    sequence: int
    from_stage: Stage | None
    to_stage: Stage
    changed_at: datetime
    actor_id: str
    actor_name: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class StageDuration:
    """Time an obligation spent in one stage; ``left_at`` None means still there."""

    stage: Stage
    entered_at: datetime
    left_at: datetime | None
    days: int


@dataclass(frozen=True)
class WorkflowDuration:
    total_days: int
    business_days: int
    stages: tuple[StageDuration, ...] = ()


@dataclass(frozen=True)
class NotificationEvent:
    """Structured event handed to the notification collaborator."""

    obligation_id: UUID
    client_id: str
    kind: ObligationKind
    from_stage: Stage | None
    to_stage: Stage
    actor_id: str
    occurred_at: datetime
    event_type: str = "stage_changed"
    assigned_reviewer_id: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class ConfirmationRequired:
    """Soft failure: the caller must re-invoke with ``confirmed=True``.

    ``warning`` is rendered verbatim to the human deciding whether to proceed.
    """

    stage: Stage
    warning: str


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a workflow transition.

    Exactly one of ``obligation`` or ``confirmation_required`` is set.
    """

    obligation: ObligationInfo | None = None
    history_entry: HistoryEntryInfo | None = None
    confirmation_required: ConfirmationRequired | None = None
    cleared_milestones: tuple[MilestoneField, ...] = ()
    skipped_stages: tuple[Stage, ...] = ()

    @property
    def applied(self) -> bool:
        return self.obligation is not None


@dataclass(frozen=True)
class AssignmentOutcome:
    obligation_id: UUID
    assigned: bool
    reviewer_id: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class RolloverOutcome:
    source_obligation_id: UUID
    created: ObligationInfo | None = None
    reason: str | None = None
    used_registry: bool = False


@dataclass(frozen=True)
class PromotionOutcome:
    obligation_id: UUID
    promoted: bool
    reason: str | None = None
