"""
ObligationSelector -- read-only queries over obligation instances.

Returns frozen ``ObligationInfo`` DTOs.  ``obligation_to_dto`` is shared
with the services so every read path produces the same snapshot.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select

from filing_kernel.domain.dtos import ObligationInfo
from filing_kernel.domain.periods import CadenceGroup
from filing_kernel.domain.stages import MilestoneField, ObligationKind, Stage
from filing_kernel.exceptions import ObligationNotFoundError
from filing_kernel.models.obligation import ObligationModel
from filing_kernel.selectors.base import BaseSelector


def obligation_to_dto(model: ObligationModel) -> ObligationInfo:
    """Convert an ORM ObligationModel to an ObligationInfo DTO."""
    milestones = {
        MilestoneField(row.field): row.to_dto() for row in model.milestones
    }
    state = model.due_date_state.to_dto() if model.due_date_state is not None else None
    return ObligationInfo(
        obligation_id=model.id,
        client_id=model.client_id,
        kind=ObligationKind(model.kind),
        cadence_group=CadenceGroup.parse(model.cadence_group),
        period_start=model.period_start,
        period_end=model.period_end,
        statutory_due_date=model.statutory_due_date,
        current_stage=Stage(model.current_stage),
        is_terminal=model.is_terminal,
        version=model.version,
        client_ref=model.client_ref,
        assigned_reviewer_id=model.assigned_reviewer_id,
        completed_at=model.completed_at,
        confirmation_statement_due=model.confirmation_statement_due,
        milestones=milestones,
        due_date_state=state,
    )


class ObligationSelector(BaseSelector[ObligationModel]):
    def get(self, obligation_id: UUID) -> ObligationInfo:
        model = self.session.get(ObligationModel, obligation_id)
        if model is None:
            raise ObligationNotFoundError(str(obligation_id))
        return obligation_to_dto(model)

    def list_for_client(
        self,
        client_id: str,
        kind: ObligationKind | str | None = None,
    ) -> list[ObligationInfo]:
        """All instances for a client, oldest period first."""
        stmt = select(ObligationModel).where(ObligationModel.client_id == client_id)
        if kind is not None:
            stmt = stmt.where(ObligationModel.kind == ObligationKind(kind).value)
        stmt = stmt.order_by(ObligationModel.kind, ObligationModel.period_end)
        return [obligation_to_dto(m) for m in self.session.scalars(stmt)]

    def open_for(self, client_id: str, kind: ObligationKind | str) -> ObligationInfo | None:
        """The single non-terminal instance for client+kind, if any."""
        model = self.session.scalars(
            select(ObligationModel).where(
                ObligationModel.client_id == client_id,
                ObligationModel.kind == ObligationKind(kind).value,
                ObligationModel.is_terminal.is_(False),
            )
        ).first()
        return obligation_to_dto(model) if model is not None else None

    def latest_for(self, client_id: str, kind: ObligationKind | str) -> ObligationInfo | None:
        model = self.session.scalars(
            select(ObligationModel)
            .where(
                ObligationModel.client_id == client_id,
                ObligationModel.kind == ObligationKind(kind).value,
            )
            .order_by(ObligationModel.period_end.desc())
            .limit(1)
        ).first()
        return obligation_to_dto(model) if model is not None else None

    def list_in_stages(
        self,
        stages: Sequence[Stage],
        *,
        unassigned_only: bool = False,
    ) -> list[ObligationInfo]:
        stmt = select(ObligationModel).where(
            ObligationModel.current_stage.in_([Stage(s).value for s in stages])
        )
        if unassigned_only:
            stmt = stmt.where(ObligationModel.assigned_reviewer_id.is_(None))
        stmt = stmt.order_by(ObligationModel.statutory_due_date, ObligationModel.client_id)
        return [obligation_to_dto(m) for m in self.session.scalars(stmt)]
