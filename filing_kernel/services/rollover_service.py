"""
RolloverService -- spawns the next period's obligation after filing.

Responsibility:
    Finds completed obligations whose cooling-off window has elapsed and
    that have no newer sibling, and creates the next instance in the
    awaiting stage, unassigned, with one system history entry.

Invariants enforced:
    - Idempotent: the "no newer sibling" guard is evaluated when scanning
      and again inside the savepoint just before insert; the
      (client_id, kind, period_end) unique constraint and the one-open
      partial index back it up.
    - The new period starts the day after the old one ended.
    - Annual instances prefer a fresh registry period end (strictly later
      than the old end); otherwise the old end rolls forward one year, so a
      year end the registry once moved is kept.  Registry failure is never
      fatal.

Failure modes:
    - ObligationNotFoundError for unknown ids.
    - A unique-index conflict is reported as a skipped outcome, not raised.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from filing_kernel.domain.calendar_math import add_months
from filing_kernel.domain.clock import DEFAULT_TIMEZONE, Clock, SystemClock, as_utc
from filing_kernel.domain.dtos import SYSTEM_ACTOR, RolloverOutcome
from filing_kernel.domain.due_dates import auto_due_date
from filing_kernel.domain.periods import (
    DEFAULT_ACCOUNTS_DUE_MONTHS,
    CadenceGroup,
    ObligationPeriod,
    accounts_due_date,
    next_annual_period_end,
    next_period,
    period_label,
)
from filing_kernel.domain.ports import RegistryLookup, RegistryPeriod
from filing_kernel.domain.stages import ObligationKind, catalog_for
from filing_kernel.exceptions import RegistryUnavailableError
from filing_kernel.logging_config import get_logger
from filing_kernel.models.obligation import ObligationModel
from filing_kernel.selectors.obligation_selector import obligation_to_dto
from filing_kernel.services.base import BaseService
from filing_kernel.services.notifications import NotificationDispatcher
from filing_kernel.services.workflow_service import WorkflowService

logger = get_logger("services.rollover")

DEFAULT_COOLING_OFF_MONTHS = 1


class RolloverService(BaseService[ObligationModel]):
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        registry: RegistryLookup | None = None,
        notifier: NotificationDispatcher | None = None,
        *,
        cooling_off_months: int = DEFAULT_COOLING_OFF_MONTHS,
        accounts_due_months: int = DEFAULT_ACCOUNTS_DUE_MONTHS,
        tz_name: str = DEFAULT_TIMEZONE,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._registry = registry
        self._cooling_off_months = cooling_off_months
        self._accounts_due_months = accounts_due_months
        self._workflow = WorkflowService(
            session,
            self._clock,
            notifier,
            tz_name=tz_name,
            accounts_due_months=accounts_due_months,
        )

    def cutoff(self, as_of: datetime | None = None) -> datetime:
        """Latest completion time that has cleared the cooling-off window."""
        return add_months(as_utc(as_of or self._clock.now()), -self._cooling_off_months)

    def find_candidates(self, as_of: datetime | None = None) -> list[UUID]:
        """Ids of obligations that satisfy the rollover trigger right now."""
        newer = aliased(ObligationModel)
        newer_exists = (
            select(newer.id)
            .where(
                newer.client_id == ObligationModel.client_id,
                newer.kind == ObligationModel.kind,
                newer.period_end > ObligationModel.period_end,
            )
            .exists()
        )
        stmt = (
            select(ObligationModel.id)
            .where(
                ObligationModel.is_terminal.is_(True),
                ObligationModel.completed_at.is_not(None),
                ObligationModel.completed_at <= self.cutoff(as_of),
                ~newer_exists,
            )
            .order_by(ObligationModel.client_id, ObligationModel.period_end)
        )
        return list(self.session.scalars(stmt))

    def roll_over(self, obligation_id: UUID, as_of: datetime | None = None) -> RolloverOutcome:
        """Create the successor of ``obligation_id`` if the trigger still holds."""
        model = self._workflow.load(obligation_id)
        reason = self._guard(model, self.cutoff(as_of))
        if reason is not None:
            logger.info(
                "rollover_skipped",
                extra={"obligation_id": str(model.id), "reason": reason},
            )
            return RolloverOutcome(source_obligation_id=model.id, reason=reason)

        kind = ObligationKind(model.kind)
        cadence = CadenceGroup.parse(model.cadence_group)
        registry_period = self._fresh_registry_period(model, kind)
        period = self._successor_period(model, cadence, registry_period)
        due_value = self._seed_due_date(model, kind, period, registry_period)
        source_label = period_label(model.period_start, model.period_end)

        try:
            with self.session.begin_nested():
                # Re-check at write time; a concurrent run may have won.
                if self._has_newer_sibling(model):
                    return RolloverOutcome(
                        source_obligation_id=model.id, reason="newer_instance_exists"
                    )
                created = self._workflow.insert_instance(
                    client_id=model.client_id,
                    kind=kind,
                    cadence=cadence,
                    period=period,
                    stage=catalog_for(kind).awaiting_stage,
                    actor=SYSTEM_ACTOR,
                    notes=f"Rolled over from period {source_label}",
                    client_ref=model.client_ref,
                    confirmation_statement_due=(
                        registry_period.confirmation_statement_due if registry_period else None
                    ),
                    due_date_value=due_value,
                )
        except IntegrityError:
            logger.warning(
                "rollover_conflict",
                extra={"obligation_id": str(model.id), "period_end": period.period_end},
            )
            return RolloverOutcome(source_obligation_id=model.id, reason="duplicate_period")

        logger.info(
            "obligation_rolled_over",
            extra={
                "obligation_id": str(model.id),
                "new_obligation_id": str(created.id),
                "client_id": model.client_id,
                "kind": kind.value,
                "period_start": period.period_start,
                "period_end": period.period_end,
                "used_registry": registry_period is not None,
            },
        )
        return RolloverOutcome(
            source_obligation_id=model.id,
            created=obligation_to_dto(created),
            used_registry=registry_period is not None,
        )

    def run(self, as_of: datetime | None = None) -> list[RolloverOutcome]:
        """Scan and roll over every candidate, in one pass."""
        return [self.roll_over(oid, as_of) for oid in self.find_candidates(as_of)]

    # =========================================================================
    # Internals
    # =========================================================================

    def _guard(self, model: ObligationModel, cutoff: datetime) -> str | None:
        if not model.is_terminal:
            return "not_terminal"
        if model.completed_at is None or model.completed_at > cutoff:
            return "cooling_off"
        if self._has_newer_sibling(model):
            return "newer_instance_exists"
        return None

    def _has_newer_sibling(self, model: ObligationModel) -> bool:
        found = self.session.scalar(
            select(ObligationModel.id)
            .where(
                ObligationModel.client_id == model.client_id,
                ObligationModel.kind == model.kind,
                ObligationModel.period_end > model.period_end,
            )
            .limit(1)
        )
        return found is not None

    def _fresh_registry_period(
        self, model: ObligationModel, kind: ObligationKind
    ) -> RegistryPeriod | None:
        if self._registry is None or not kind.uses_registry or not model.client_ref:
            return None
        try:
            found = self._registry.fetch_authoritative_period_end(model.client_ref)
        except RegistryUnavailableError as exc:
            logger.warning(
                "registry_unavailable",
                extra={
                    "obligation_id": str(model.id),
                    "client_ref": model.client_ref,
                    "reason": exc.reason,
                },
            )
            return None
        if found is None:
            logger.warning(
                "registry_unavailable",
                extra={
                    "obligation_id": str(model.id),
                    "client_ref": model.client_ref,
                    "reason": "no data",
                },
            )
            return None
        if found.period_end <= model.period_end:
            logger.info(
                "registry_period_stale",
                extra={
                    "obligation_id": str(model.id),
                    "registry_period_end": found.period_end,
                    "current_period_end": model.period_end,
                },
            )
            return None
        return found

    def _successor_period(
        self,
        model: ObligationModel,
        cadence: CadenceGroup,
        registry_period: RegistryPeriod | None,
    ) -> ObligationPeriod:
        start = model.period_end + timedelta(days=1)
        if registry_period is not None:
            return ObligationPeriod(
                period_start=start,
                period_end=registry_period.period_end,
                statutory_due_date=(
                    registry_period.statutory_due_date
                    or accounts_due_date(registry_period.period_end, self._accounts_due_months)
                ),
                cadence_group=cadence,
            )
        if not cadence.is_quarterly:
            end = next_annual_period_end(model.period_end)
            return ObligationPeriod(
                period_start=start,
                period_end=end,
                statutory_due_date=accounts_due_date(end, self._accounts_due_months),
                cadence_group=cadence,
            )
        calendar = next_period(
            cadence, model.period_end, accounts_due_months=self._accounts_due_months
        )
        return replace(calendar, period_start=start)

    def _seed_due_date(
        self,
        model: ObligationModel,
        kind: ObligationKind,
        period: ObligationPeriod,
        registry_period: RegistryPeriod | None,
    ) -> date | None:
        if not kind.has_due_date_override:
            return None
        if registry_period is not None and registry_period.corporation_tax_due_date:
            return registry_period.corporation_tax_due_date
        previous = model.due_date_state
        if previous is not None and previous.next_due_date is not None:
            return previous.next_due_date
        return auto_due_date(period.period_end)

