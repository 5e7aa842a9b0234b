"""
PromotionService -- moves awaiting instances into work once their period ends.

Each promotion is an ordinary workflow transition (awaiting stage -> first
working stage) made by the system actor, so it appends exactly one history
entry.  Re-running is harmless: an instance already promoted is skipped.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from filing_kernel.domain.clock import DEFAULT_TIMEZONE, Clock, SystemClock
from filing_kernel.domain.dtos import SYSTEM_ACTOR, PromotionOutcome
from filing_kernel.domain.stages import CATALOGS, catalog_for
from filing_kernel.logging_config import get_logger
from filing_kernel.models.obligation import ObligationModel
from filing_kernel.services.base import BaseService
from filing_kernel.services.notifications import NotificationDispatcher
from filing_kernel.services.workflow_service import WorkflowService

logger = get_logger("services.promotion")


class PromotionService(BaseService[ObligationModel]):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        notifier: NotificationDispatcher | None = None,
        *,
        tz_name: str = DEFAULT_TIMEZONE,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._tz_name = tz_name
        self._workflow = WorkflowService(session, self._clock, notifier, tz_name=tz_name)

    def find_awaiting_due(self, today: date | None = None) -> list[UUID]:
        today = today or self._clock.today(self._tz_name)
        awaiting = sorted({c.awaiting_stage.stage.value for c in CATALOGS.values()})
        stmt = (
            select(ObligationModel.id)
            .where(
                ObligationModel.current_stage.in_(awaiting),
                ObligationModel.period_end <= today,
            )
            .order_by(ObligationModel.period_end, ObligationModel.client_id)
        )
        return list(self.session.scalars(stmt))

    def promote(self, obligation_id: UUID, today: date | None = None) -> PromotionOutcome:
        today = today or self._clock.today(self._tz_name)
        model = self._workflow.load(obligation_id)
        catalog = catalog_for(model.kind)

        if model.current_stage != catalog.awaiting_stage.stage.value:
            return PromotionOutcome(obligation_id=model.id, promoted=False, reason="not_awaiting")
        if today < model.period_end:
            return PromotionOutcome(
                obligation_id=model.id, promoted=False, reason="period_not_ended"
            )

        target = catalog.first_working_stage
        self._workflow.transition(
            model.id,
            target.stage,
            SYSTEM_ACTOR,
            f"Period ended {model.period_end.isoformat()}; moved to {target.label}",
            expected_version=model.version,
        )
        logger.info(
            "obligation_promoted",
            extra={
                "obligation_id": str(model.id),
                "period_end": model.period_end,
                "to_stage": target.stage.value,
            },
        )
        return PromotionOutcome(obligation_id=model.id, promoted=True)

    def run(self, today: date | None = None) -> list[PromotionOutcome]:
        return [self.promote(oid, today) for oid in self.find_awaiting_due(today)]
