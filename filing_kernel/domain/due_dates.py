"""
Due-date override rules for annual obligations (corporation tax).

Responsibility:
    Pure state transitions for the AUTO/MANUAL due-date state that sits
    beside each annual obligation.  The due-date service loads and persists
    the state; nothing here touches the database or the clock.

Rules:
    - AUTO due date = period end + 12 calendar months (never +365 days).
    - MANUAL overrides may not precede the period end.
    - MANUAL overrides are sticky: registry refreshes skip them unless
      forced.
    - While unfiled, a refresh that would move the due date by more than
      ``large_change_days`` is held back for a human to confirm with force.
    - Filing clears any override.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum

from filing_kernel.domain.calendar_math import add_months
from filing_kernel.exceptions import InvalidDateError, NoPeriodEndError

AUTO_DUE_MONTHS = 12
DEFAULT_LARGE_CHANGE_DAYS = 30

MANUAL_OVERRIDE_WARNING = "Manual due-date override exists - auto-update skipped"


class DueDateSource(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class DueStatus(str, Enum):
    PENDING = "pending"
    FILED = "filed"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class DueDateState:
    source: DueDateSource
    value: date | None
    last_updated_by: str | None = None
    last_updated_at: datetime | None = None
    filed_on: date | None = None
    next_due_date: date | None = None

    @property
    def is_manual(self) -> bool:
        return self.source is DueDateSource.MANUAL


@dataclass(frozen=True)
class DueDateDecision:
    should_update: bool
    new_value: date | None
    warnings: tuple[str, ...] = ()


def auto_due_date(period_end: date | None) -> date:
    """Corporation-tax due date: exactly twelve calendar months after period end."""
    if period_end is None:
        raise NoPeriodEndError()
    return add_months(period_end, AUTO_DUE_MONTHS)


def initial_state(period_end: date, actor_id: str, at: datetime) -> DueDateState:
    return DueDateState(
        source=DueDateSource.AUTO,
        value=auto_due_date(period_end),
        last_updated_by=actor_id,
        last_updated_at=at,
    )


def set_manual(
    current: DueDateState | None,
    due_date: date,
    period_end: date,
    actor_id: str,
    at: datetime,
) -> DueDateState:
    """Pin the due date.

    Raises:
        InvalidDateError: ``due_date`` precedes ``period_end``.
    """
    if due_date < period_end:
        raise InvalidDateError(due_date.isoformat(), period_end.isoformat())
    base = current or DueDateState(source=DueDateSource.MANUAL, value=None)
    return replace(
        base,
        source=DueDateSource.MANUAL,
        value=due_date,
        last_updated_by=actor_id,
        last_updated_at=at,
    )


def reset_auto(
    current: DueDateState | None,
    period_end: date | None,
    actor_id: str,
    at: datetime,
) -> DueDateState:
    """Drop any override and recompute from the period end.

    Raises:
        NoPeriodEndError: ``period_end`` is None.
    """
    value = auto_due_date(period_end)
    base = current or DueDateState(source=DueDateSource.AUTO, value=None)
    return replace(
        base,
        source=DueDateSource.AUTO,
        value=value,
        last_updated_by=actor_id,
        last_updated_at=at,
    )


def mark_filed(
    current: DueDateState,
    filed_on: date,
    actor_id: str,
    at: datetime,
    next_period_end: date | None = None,
) -> DueDateState:
    """Record filing: clear the override and carry the next period's due date."""
    return replace(
        current,
        source=DueDateSource.AUTO,
        filed_on=filed_on,
        next_due_date=auto_due_date(next_period_end) if next_period_end else None,
        last_updated_by=actor_id,
        last_updated_at=at,
    )


def should_update_due_date(
    current: DueDateState,
    new_period_end: date | None,
    *,
    force: bool = False,
    large_change_days: int = DEFAULT_LARGE_CHANGE_DAYS,
) -> DueDateDecision:
    """Decide whether a registry-reported period end should move the due date."""
    if current.is_manual and not force:
        return DueDateDecision(False, current.value, (MANUAL_OVERRIDE_WARNING,))

    new_value = auto_due_date(new_period_end)
    warnings: list[str] = []

    if current.value == new_value and not current.is_manual:
        return DueDateDecision(False, current.value)

    if current.is_manual:
        warnings.append(
            f"Manual due-date override {current.value} replaced by forced "
            f"registry refresh ({new_value})"
        )

    if current.filed_on is None and current.value is not None:
        shift = abs((new_value - current.value).days)
        if shift > large_change_days:
            warnings.append(
                f"Large due-date change detected: {current.value} -> {new_value} "
                f"({shift} days)"
            )
            if not force:
                return DueDateDecision(False, current.value, tuple(warnings))

    return DueDateDecision(True, new_value, tuple(warnings))


def due_status(state: DueDateState, today: date) -> DueStatus:
    if state.filed_on is not None:
        return DueStatus.FILED
    if state.value is not None and today > state.value:
        return DueStatus.OVERDUE
    return DueStatus.PENDING
