"""
WorkflowService -- the obligation state machine.

Responsibility:
    Creates first-ever obligation instances from the period calculator and
    applies stage transitions: stage update, milestone stamping/cleanup and
    history append, as one unit.

Architecture position:
    Kernel > Services -- imperative shell around the pure transition
    planner in ``domain/workflow.py``.

Invariants enforced:
    - Every mutation runs inside ``session.begin_nested()``: stage,
      milestones and the history entry land together or not at all.
    - Optimistic concurrency: ``ObligationModel.version`` is the mapper's
      ``version_id_col``.  A flush against a stale row raises
      StaleDataError, surfaced as ConcurrentModificationError.  Callers may
      also pass ``expected_version`` to reject a stale read up front.
    - At most one open instance per client+kind (service check, backed by
      a partial unique index).
    - Flush-only: never commits.

Failure modes:
    - InvalidTransitionError, ObligationNotFoundError,
      OpenObligationExistsError, ConcurrentModificationError,
      InvalidCadenceGroupError.
    - ConfirmationRequired is a result, not an exception: nothing changes
      and the caller re-invokes with ``confirmed=True``.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from filing_kernel.domain.clock import DEFAULT_TIMEZONE, Clock, SystemClock
from filing_kernel.domain.due_dates import initial_state
from filing_kernel.domain.dtos import (
    Actor,
    ConfirmationRequired,
    NotificationEvent,
    ObligationInfo,
    TransitionResult,
)
from filing_kernel.domain.periods import (
    DEFAULT_ACCOUNTS_DUE_MONTHS,
    CadenceGroup,
    ObligationPeriod,
    compute_period,
)
from filing_kernel.domain.stages import (
    MilestoneField,
    ObligationKind,
    Stage,
    StageDefinition,
    catalog_for,
)
from filing_kernel.domain.workflow import TransitionPlan, plan_transition
from filing_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidCadenceGroupError,
    InvalidTransitionError,
    ObligationNotFoundError,
    OpenObligationExistsError,
)
from filing_kernel.logging_config import get_logger
from filing_kernel.models.due_date import DueDateStateModel
from filing_kernel.models.obligation import ObligationMilestoneModel, ObligationModel
from filing_kernel.selectors.obligation_selector import ObligationSelector, obligation_to_dto
from filing_kernel.services.base import BaseService
from filing_kernel.services.history_ledger import HistoryLedger
from filing_kernel.services.notifications import NotificationDispatcher

logger = get_logger("services.workflow")

_UNSET = object()


class WorkflowService(BaseService[ObligationModel]):
    """
    State machine for obligation instances.

    Contract:
        Accepts obligation ids and stage identifiers, returns frozen DTOs.
        All writes flush within the caller's transaction.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        notifier: NotificationDispatcher | None = None,
        *,
        tz_name: str = DEFAULT_TIMEZONE,
        accounts_due_months: int = DEFAULT_ACCOUNTS_DUE_MONTHS,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._notifier = notifier or NotificationDispatcher()
        self._ledger = HistoryLedger(session)
        self._selector = ObligationSelector(session)
        self._tz_name = tz_name
        self._accounts_due_months = accounts_due_months

    @property
    def ledger(self) -> HistoryLedger:
        return self._ledger

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def notifier(self) -> NotificationDispatcher:
        return self._notifier

    # =========================================================================
    # Creation
    # =========================================================================

    def create_obligation(
        self,
        client_id: str,
        kind: ObligationKind | str,
        cadence_group: CadenceGroup | str,
        reference_date: date,
        actor: Actor,
        *,
        client_ref: str | None = None,
        confirmation_statement_due: date | None = None,
    ) -> ObligationInfo:
        """
        Create the first instance for a client+kind from the period calculator.

        The instance starts in the awaiting stage, or directly in the first
        working stage when its period has already ended.

        Raises:
            OpenObligationExistsError: An open instance already exists.
            InvalidCadenceGroupError: Cadence does not suit the kind.
        """
        kind = ObligationKind(kind)
        cadence = (
            cadence_group
            if isinstance(cadence_group, CadenceGroup)
            else CadenceGroup.parse(cadence_group)
        )
        _check_cadence_matches_kind(cadence, kind)

        existing = self._selector.open_for(client_id, kind)
        if existing is not None:
            raise OpenObligationExistsError(client_id, kind.value, str(existing.obligation_id))

        period = compute_period(
            cadence, reference_date, accounts_due_months=self._accounts_due_months
        )
        catalog = catalog_for(kind)
        today = self._clock.today(self._tz_name)
        start = (
            catalog.first_working_stage
            if today >= period.period_end
            else catalog.awaiting_stage
        )

        try:
            model = self.insert_instance(
                client_id=client_id,
                kind=kind,
                cadence=cadence,
                period=period,
                stage=start,
                actor=actor,
                notes=f"Created for period {period.label}",
                client_ref=client_ref,
                confirmation_statement_due=confirmation_statement_due,
            )
        except IntegrityError:
            raise OpenObligationExistsError(client_id, kind.value) from None

        logger.info(
            "obligation_created",
            extra={
                "obligation_id": str(model.id),
                "client_id": client_id,
                "kind": kind.value,
                "period": period.label,
                "stage": start.stage.value,
                "actor_id": actor.actor_id,
            },
        )
        return obligation_to_dto(model)

    def insert_instance(
        self,
        *,
        client_id: str,
        kind: ObligationKind,
        cadence: CadenceGroup,
        period: ObligationPeriod,
        stage: StageDefinition,
        actor: Actor,
        notes: str,
        client_ref: str | None = None,
        confirmation_statement_due: date | None = None,
        due_date_value: date | None = None,
    ) -> ObligationModel:
        """
        Insert an instance plus its creation history entry in one savepoint.

        Annual instances get a DueDateState seeded AUTO, from
        ``due_date_value`` when given, else period end + 12 months.

        Raises:
            IntegrityError: A unique index rejected the row.
        """
        now = self._clock.now_utc()
        with self.session.begin_nested():
            model = ObligationModel(
                client_id=client_id,
                client_ref=client_ref,
                kind=kind.value,
                cadence_group=cadence.code,
                period_start=period.period_start,
                period_end=period.period_end,
                statutory_due_date=period.statutory_due_date,
                current_stage=stage.stage.value,
                is_terminal=stage.is_terminal,
                assigned_reviewer_id=None,
                confirmation_statement_due=confirmation_statement_due,
                created_by_id=actor.actor_id,
            )
            if kind.has_due_date_override:
                state = initial_state(period.period_end, actor.actor_id, now)
                if due_date_value is not None:
                    state = replace(state, value=due_date_value)
                row = DueDateStateModel(created_by_id=actor.actor_id)
                row.apply(state, actor.actor_id)
                model.due_date_state = row

            self.session.add(model)
            self.session.flush()
            self._ledger.append(model.id, None, stage.stage, now, actor, notes)
        return model

    # =========================================================================
    # Transitions
    # =========================================================================

    def transition(
        self,
        obligation_id: UUID,
        target_stage: Stage | str,
        actor: Actor,
        notes: str | None = None,
        *,
        confirmed: bool = False,
        assigned_reviewer_id: str | None | object = _UNSET,
        expected_version: int | None = None,
        reopen: bool = False,
    ) -> TransitionResult:
        """
        Move an obligation to ``target_stage``.

        Raises:
            InvalidTransitionError: The move is not allowed.
            ObligationNotFoundError: Unknown obligation id.
            ConcurrentModificationError: The obligation changed underneath us.
        """
        model = self.load(obligation_id)
        self._check_version(model, expected_version)

        catalog = catalog_for(model.kind)
        outcome = plan_transition(
            catalog, model.current_stage, target_stage, reopen=reopen, confirmed=confirmed
        )
        if isinstance(outcome, ConfirmationRequired):
            logger.info(
                "transition_confirmation_required",
                extra={
                    "obligation_id": str(model.id),
                    "from_stage": model.current_stage,
                    "to_stage": outcome.stage.value,
                },
            )
            return TransitionResult(confirmation_required=outcome)

        plan: TransitionPlan = outcome
        label = catalog.get(plan.to_stage).label
        if notes is None:
            notes = f"Reopened to: {label}" if plan.is_reopen else f"Stage updated to: {label}"
        now = self._clock.now_utc()

        try:
            with self.session.begin_nested():
                self._apply_plan(model, plan, actor, now)
                if assigned_reviewer_id is not _UNSET:
                    model.assigned_reviewer_id = assigned_reviewer_id
                model.updated_by_id = actor.actor_id
                self.session.flush()
                entry = self._ledger.append(
                    model.id, plan.from_stage, plan.to_stage, now, actor, notes
                )
        except StaleDataError:
            raise ConcurrentModificationError(str(obligation_id), expected_version) from None
        except IntegrityError:
            # Reopening next to an already rolled-over sibling.
            raise OpenObligationExistsError(model.client_id, model.kind) from None

        logger.info(
            "obligation_transitioned",
            extra={
                "obligation_id": str(model.id),
                "from_stage": plan.from_stage.value,
                "to_stage": plan.to_stage.value,
                "is_backward": plan.is_backward,
                "is_reopen": plan.is_reopen,
                "cleared": [f.value for f in plan.milestones_to_clear],
                "actor_id": actor.actor_id,
            },
        )
        if plan.skipped_stages:
            logger.info(
                "transition_skipped_stages",
                extra={
                    "obligation_id": str(model.id),
                    "skipped": [s.value for s in plan.skipped_stages],
                },
            )
        if assigned_reviewer_id is not _UNSET:
            logger.info(
                "reviewer_assigned",
                extra={
                    "obligation_id": str(model.id),
                    "reviewer_id": assigned_reviewer_id,
                    "actor_id": actor.actor_id,
                },
            )

        self._notifier.emit(
            NotificationEvent(
                obligation_id=model.id,
                client_id=model.client_id,
                kind=ObligationKind(model.kind),
                from_stage=plan.from_stage,
                to_stage=plan.to_stage,
                actor_id=actor.actor_id,
                occurred_at=now,
                assigned_reviewer_id=model.assigned_reviewer_id,
                notes=notes,
            )
        )

        return TransitionResult(
            obligation=obligation_to_dto(model),
            history_entry=entry,
            cleared_milestones=plan.milestones_to_clear,
            skipped_stages=plan.skipped_stages,
        )

    def reopen(
        self,
        obligation_id: UUID,
        target_stage: Stage | str,
        actor: Actor,
        notes: str | None = None,
        *,
        expected_version: int | None = None,
    ) -> TransitionResult:
        """Move a completed obligation back to a working stage."""
        return self.transition(
            obligation_id,
            target_stage,
            actor,
            notes,
            expected_version=expected_version,
            reopen=True,
        )

    def record_assignment(
        self,
        obligation_id: UUID,
        reviewer_id: str | None,
        actor: Actor,
        notes: str | None = None,
        *,
        milestone: MilestoneField | None = None,
        milestone_actor: Actor | None = None,
        expected_version: int | None = None,
    ) -> ObligationInfo:
        """
        Set (or clear) the assigned reviewer without moving stage.

        Appends a history entry whose from/to stage are both the current
        stage.  ``milestone`` is optionally stamped, attributed to
        ``milestone_actor``.
        """
        model = self.load(obligation_id)
        self._check_version(model, expected_version)
        if model.is_terminal:
            raise InvalidTransitionError(
                model.current_stage,
                model.current_stage,
                "cannot assign a completed obligation",
            )

        stage = Stage(model.current_stage)
        if notes is None:
            notes = f"Assigned to {reviewer_id}" if reviewer_id else "Unassigned"
        now = self._clock.now_utc()

        try:
            with self.session.begin_nested():
                model.assigned_reviewer_id = reviewer_id
                model.updated_by_id = actor.actor_id
                if milestone is not None:
                    self._stamp(model, milestone, milestone_actor or actor, now)
                self.session.flush()
                self._ledger.append(model.id, stage, stage, now, actor, notes)
        except StaleDataError:
            raise ConcurrentModificationError(str(obligation_id), expected_version) from None

        logger.info(
            "reviewer_assigned",
            extra={
                "obligation_id": str(model.id),
                "reviewer_id": reviewer_id,
                "milestone": milestone.value if milestone else None,
                "actor_id": actor.actor_id,
            },
        )
        self._notifier.emit(
            NotificationEvent(
                obligation_id=model.id,
                client_id=model.client_id,
                kind=ObligationKind(model.kind),
                from_stage=stage,
                to_stage=stage,
                actor_id=actor.actor_id,
                occurred_at=now,
                event_type="reviewer_assigned",
                assigned_reviewer_id=reviewer_id,
                notes=notes,
            )
        )
        return obligation_to_dto(model)

    # =========================================================================
    # Internals
    # =========================================================================

    def load(self, obligation_id: UUID) -> ObligationModel:
        """Load the current row state, bypassing any stale identity-map copy."""
        model = self.session.get(ObligationModel, obligation_id, populate_existing=True)
        if model is None:
            raise ObligationNotFoundError(str(obligation_id))
        return model

    def _check_version(self, model: ObligationModel, expected_version: int | None) -> None:
        if expected_version is not None and model.version != expected_version:
            raise ConcurrentModificationError(
                str(model.id), expected_version, model.version
            )

    def _apply_plan(
        self,
        model: ObligationModel,
        plan: TransitionPlan,
        actor: Actor,
        now: datetime,
    ) -> None:
        # The target's own milestone is re-stamped in place rather than
        # deleted and re-inserted; both would hit the same unique key.
        to_clear = {f.value for f in plan.milestones_to_clear}
        if plan.milestone_to_set is not None:
            to_clear.discard(plan.milestone_to_set.value)
        for row in list(model.milestones):
            if row.field in to_clear:
                model.milestones.remove(row)

        if plan.milestone_to_set is not None:
            self._stamp(model, plan.milestone_to_set, actor, now)

        model.current_stage = plan.to_stage.value
        model.is_terminal = plan.becomes_terminal
        model.completed_at = now if plan.becomes_terminal else None

    def _stamp(
        self,
        model: ObligationModel,
        milestone: MilestoneField,
        actor: Actor,
        now: datetime,
    ) -> None:
        row = model.milestone_row(milestone.value)
        if row is None:
            model.milestones.append(
                ObligationMilestoneModel(
                    field=milestone.value,
                    stamped_at=now,
                    actor_id=actor.actor_id,
                    actor_name=actor.name,
                )
            )
            return
        row.stamped_at = now
        row.actor_id = actor.actor_id
        row.actor_name = actor.name


def _check_cadence_matches_kind(cadence: CadenceGroup, kind: ObligationKind) -> None:
    if kind is ObligationKind.VAT_RETURN and not cadence.is_quarterly:
        raise InvalidCadenceGroupError(cadence.code, "VAT returns need a quarterly cadence")
    if kind is not ObligationKind.VAT_RETURN and cadence.is_quarterly:
        raise InvalidCadenceGroupError(cadence.code, "annual accounts need an annual anchor")
    if kind.fixed_cadence is not None and cadence.code != kind.fixed_cadence:
        raise InvalidCadenceGroupError(
            cadence.code, f"{kind.value} always uses {kind.fixed_cadence}"
        )
