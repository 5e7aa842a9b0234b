"""
DueDateService -- persistence shell for the AUTO/MANUAL due-date rules.

Responsibility:
    Loads and saves the DueDateState that sits beside each annual
    obligation, delegating every decision to ``domain/due_dates.py``.
    Filing goes through the workflow state machine so the terminal
    milestone and history entry are written the same way as any other
    transition.

Invariants enforced:
    - Only limited-company annual accounts carry a due-date state
      (UnsupportedObligationKindError otherwise).
    - Manual overrides survive registry refreshes unless forced.
    - Filing is atomic: the workflow transition and the state update share
      one savepoint.
    - The filing notification goes out only after that savepoint commits.
    - Flush-only: never commits.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from filing_kernel.domain.clock import DEFAULT_TIMEZONE, Clock, SystemClock
from filing_kernel.domain.dtos import SYSTEM_ACTOR, Actor, TransitionResult
from filing_kernel.domain.due_dates import (
    DEFAULT_LARGE_CHANGE_DAYS,
    DueDateDecision,
    DueDateSource,
    DueDateState,
    DueStatus,
    due_status,
    initial_state,
    mark_filed,
    reset_auto,
    set_manual,
    should_update_due_date,
)
from filing_kernel.domain.stages import ObligationKind, Stage
from filing_kernel.exceptions import UnsupportedObligationKindError
from filing_kernel.logging_config import get_logger
from filing_kernel.models.due_date import DueDateStateModel
from filing_kernel.models.obligation import ObligationModel
from filing_kernel.selectors.obligation_selector import obligation_to_dto
from filing_kernel.services.base import BaseService
from filing_kernel.services.workflow_service import WorkflowService

logger = get_logger("services.due_date")


class DueDateService(BaseService[DueDateStateModel]):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        workflow: WorkflowService | None = None,
        *,
        large_change_days: int = DEFAULT_LARGE_CHANGE_DAYS,
        tz_name: str = DEFAULT_TIMEZONE,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._workflow = workflow or WorkflowService(session, self._clock, tz_name=tz_name)
        self._large_change_days = large_change_days
        self._tz_name = tz_name

    def get_state(self, obligation_id: UUID) -> DueDateState:
        model = self._workflow.load(obligation_id)
        return self._state_row(model).to_dto()

    def set_manual(self, obligation_id: UUID, due_date: date, actor: Actor) -> DueDateState:
        """
        Pin the due date to ``due_date``.

        Raises:
            InvalidDateError: ``due_date`` precedes the obligation's period end.
        """
        model = self._workflow.load(obligation_id)
        row = self._state_row(model)
        state = set_manual(
            row.to_dto(), due_date, model.period_end, actor.actor_id, self._clock.now_utc()
        )
        self._save(row, state, actor)
        logger.info(
            "due_date_manual_set",
            extra={
                "obligation_id": str(model.id),
                "due_date": due_date,
                "actor_id": actor.actor_id,
            },
        )
        return state

    def reset_auto(self, obligation_id: UUID, actor: Actor) -> DueDateState:
        """
        Drop any manual override and recompute from the period end.

        Raises:
            NoPeriodEndError: The obligation has no period end.
        """
        model = self._workflow.load(obligation_id)
        row = self._state_row(model)
        state = reset_auto(row.to_dto(), model.period_end, actor.actor_id, self._clock.now_utc())
        self._save(row, state, actor)
        logger.info(
            "due_date_reset_auto",
            extra={
                "obligation_id": str(model.id),
                "due_date": state.value,
                "actor_id": actor.actor_id,
            },
        )
        return state

    def mark_filed(
        self,
        obligation_id: UUID,
        actor: Actor,
        *,
        confirmed: bool = False,
        next_period_end: date | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        """
        Record the corporation-tax filing.

        Moves the obligation to FILED_TO_HMRC through the state machine
        (confirmation required), clears any manual override and carries the
        next period's due date when the registry supplied its period end.
        Does not create the next instance; rollover does that.
        """
        model = self._workflow.load(obligation_id)
        self._require_annual(model)

        with self._workflow.notifier.deferred(), self.session.begin_nested():
            result = self._workflow.transition(
                obligation_id,
                Stage.FILED_TO_HMRC,
                actor,
                notes,
                confirmed=confirmed,
            )
            if not result.applied:
                return result

            row = self._state_row(model)
            state = mark_filed(
                row.to_dto(),
                filed_on=self._clock.today(self._tz_name),
                actor_id=actor.actor_id,
                at=self._clock.now_utc(),
                next_period_end=next_period_end,
            )
            self._save(row, state, actor)

        logger.info(
            "due_date_filed",
            extra={
                "obligation_id": str(model.id),
                "filed_on": state.filed_on,
                "next_due_date": state.next_due_date,
                "actor_id": actor.actor_id,
            },
        )
        return replace(result, obligation=obligation_to_dto(model))

    def apply_registry_refresh(
        self,
        obligation_id: UUID,
        new_period_end: date | None,
        *,
        force: bool = False,
        actor: Actor = SYSTEM_ACTOR,
    ) -> DueDateDecision:
        """Run ``should_update_due_date`` and persist the outcome when it says so."""
        model = self._workflow.load(obligation_id)
        row = self._state_row(model)
        current = row.to_dto()
        decision = should_update_due_date(
            current,
            new_period_end,
            force=force,
            large_change_days=self._large_change_days,
        )

        for warning in decision.warnings:
            logger.warning(
                "due_date_refresh_warning",
                extra={
                    "obligation_id": str(model.id),
                    "warning": warning,
                    "force": force,
                },
            )

        if decision.should_update:
            state = replace(
                current,
                source=DueDateSource.AUTO,
                value=decision.new_value,
                last_updated_by=actor.actor_id,
                last_updated_at=self._clock.now_utc(),
            )
            self._save(row, state, actor)
            logger.info(
                "due_date_refreshed",
                extra={
                    "obligation_id": str(model.id),
                    "old_value": current.value,
                    "new_value": decision.new_value,
                },
            )
        return decision

    def due_status(self, obligation_id: UUID, today: date | None = None) -> DueStatus:
        state = self.get_state(obligation_id)
        return due_status(state, today or self._clock.today(self._tz_name))

    # =========================================================================
    # Internals
    # =========================================================================

    def _require_annual(self, model: ObligationModel) -> None:
        if not ObligationKind(model.kind).has_due_date_override:
            raise UnsupportedObligationKindError(str(model.id), model.kind)

    def _state_row(self, model: ObligationModel) -> DueDateStateModel:
        self._require_annual(model)
        if model.due_date_state is None:
            # Instances created before a state existed get one lazily.
            row = DueDateStateModel(created_by_id=SYSTEM_ACTOR.actor_id)
            row.apply(
                initial_state(model.period_end, SYSTEM_ACTOR.actor_id, self._clock.now_utc()),
                SYSTEM_ACTOR.actor_id,
            )
            model.due_date_state = row
            self.session.flush()
        return model.due_date_state

    def _save(self, row: DueDateStateModel, state: DueDateState, actor: Actor) -> None:
        row.apply(state, actor.actor_id)
        self.session.flush()
