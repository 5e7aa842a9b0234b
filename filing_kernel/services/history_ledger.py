"""
HistoryLedger -- append-only record of every workflow transition.

Responsibility:
    Appends one ObligationHistoryModel row per transition and answers the
    derived reads built on it: ordered history, days spent in each stage
    and total workflow duration.  Durations are always derived from the
    entries, never stored.

Invariants enforced:
    - Append only.  ORM listeners reject UPDATE/DELETE on history rows.
    - ``sequence`` is strictly increasing per obligation, so ordering by
      (changed_at, sequence) is total even when timestamps collide.
    - Flush-only: never commits.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select

from filing_kernel.domain.calendar_math import business_days_between
from filing_kernel.domain.clock import as_utc
from filing_kernel.domain.dtos import (
    Actor,
    HistoryEntryInfo,
    StageDuration,
    WorkflowDuration,
)
from filing_kernel.domain.stages import Stage
from filing_kernel.logging_config import get_logger
from filing_kernel.models.history import ObligationHistoryModel
from filing_kernel.services.base import BaseService

logger = get_logger("services.history")


class HistoryLedger(BaseService[ObligationHistoryModel]):
    def append(
        self,
        obligation_id: UUID,
        from_stage: Stage | str | None,
        to_stage: Stage | str,
        changed_at: datetime,
        actor: Actor,
        notes: str | None = None,
    ) -> HistoryEntryInfo:
        """Append one entry and flush it."""
        last = self.session.scalar(
            select(func.max(ObligationHistoryModel.sequence)).where(
                ObligationHistoryModel.obligation_id == obligation_id
            )
        )
        entry = ObligationHistoryModel(
            obligation_id=obligation_id,
            sequence=(last or 0) + 1,
            from_stage=Stage(from_stage).value if from_stage is not None else None,
            to_stage=Stage(to_stage).value,
            changed_at=as_utc(changed_at),
            actor_id=actor.actor_id,
            actor_name=actor.name,
            notes=notes,
        )
        self.session.add(entry)
        self.session.flush()

        logger.debug(
            "history_entry_appended",
            extra={
                "obligation_id": str(obligation_id),
                "sequence": entry.sequence,
                "from_stage": entry.from_stage,
                "to_stage": entry.to_stage,
                "actor_id": actor.actor_id,
            },
        )
        return entry.to_dto()

    def query_for(self, obligation_id: UUID) -> tuple[HistoryEntryInfo, ...]:
        rows = self.session.scalars(
            select(ObligationHistoryModel)
            .where(ObligationHistoryModel.obligation_id == obligation_id)
            .order_by(ObligationHistoryModel.changed_at, ObligationHistoryModel.sequence)
        )
        return tuple(row.to_dto() for row in rows)

    def days_in_stage(
        self, obligation_id: UUID, as_of: datetime
    ) -> tuple[StageDuration, ...]:
        """
        Time spent in each stage visited, in order.

        Consecutive entries landing on the same stage (e.g. a reviewer
        assignment) are merged into one stay.  The final stay is measured
        up to ``as_of``.
        """
        as_of = as_utc(as_of)
        stays: list[StageDuration] = []
        stage: Stage | None = None
        entered_at: datetime | None = None

        for entry in self.query_for(obligation_id):
            if entry.to_stage == stage:
                continue
            if stage is not None:
                stays.append(
                    StageDuration(
                        stage=stage,
                        entered_at=entered_at,
                        left_at=entry.changed_at,
                        days=(entry.changed_at - entered_at).days,
                    )
                )
            stage, entered_at = entry.to_stage, entry.changed_at

        if stage is not None:
            stays.append(
                StageDuration(
                    stage=stage,
                    entered_at=entered_at,
                    left_at=None,
                    days=max((as_of - entered_at).days, 0),
                )
            )
        return tuple(stays)

    def workflow_duration(self, obligation_id: UUID, as_of: datetime) -> WorkflowDuration:
        as_of = as_utc(as_of)
        stays = self.days_in_stage(obligation_id, as_of)
        if not stays:
            return WorkflowDuration(total_days=0, business_days=0)
        started = stays[0].entered_at
        return WorkflowDuration(
            total_days=max((as_of - started).days, 0),
            business_days=business_days_between(started.date(), as_of.date()),
            stages=stays,
        )
