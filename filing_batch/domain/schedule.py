"""
Schedule evaluation -- cron matching and next-run computation.

Everything here is pure: callers pass the current time in, nothing reads
a clock.

Cron dialect (five fields: minute hour day-of-month month day-of-week):
    - ``*``, single values, ``a-b`` ranges, ``*/n`` and ``a-b/n`` steps and
      comma lists.
    - Month names (JAN..DEC) and day names (SUN..SAT), case-insensitive.
    - Day-of-week 7 is accepted as Sunday.
    - When both day fields are restricted, a day matches if EITHER does,
      as in Vixie cron.  ``0 6 1 * MON`` fires on the 1st and on Mondays.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from filing_kernel.domain.calendar_math import add_months

from filing_batch.domain.types import JobSchedule, ScheduleFrequency

_MONTH_NAMES = {
    name: i + 1
    for i, name in enumerate(
        ("JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC")
    )
}
_DAY_NAMES = {
    name: i for i, name in enumerate(("SUN", "MON", "TUE", "WED", "THU", "FRI", "SAT"))
}

# (low, high, names) per field, in expression order
_FIELDS = (
    (0, 59, {}),
    (0, 23, {}),
    (1, 31, {}),
    (1, 12, _MONTH_NAMES),
    (0, 7, _DAY_NAMES),
)

# Bound on the next-match search: about four years of days, enough for
# any satisfiable expression including 29 February.
_MAX_SEARCH_DAYS = 366 * 4 + 1


class CronError(ValueError):
    """Malformed cron expression."""


@dataclass(frozen=True)
class CronExpression:
    """A parsed five-field cron expression."""

    source: str
    minutes: frozenset[int]
    hours: frozenset[int]
    days_of_month: frozenset[int]
    months: frozenset[int]
    days_of_week: frozenset[int]
    dom_restricted: bool
    dow_restricted: bool

    @classmethod
    def parse(cls, expression: str) -> CronExpression:
        parts = expression.split()
        if len(parts) != 5:
            raise CronError(f"expected 5 fields, got {len(parts)}: {expression!r}")

        sets = [
            _parse_field(text, low, high, names)
            for text, (low, high, names) in zip(parts, _FIELDS)
        ]
        dow = frozenset(0 if d == 7 else d for d in sets[4])
        return cls(
            source=expression,
            minutes=sets[0],
            hours=sets[1],
            days_of_month=sets[2],
            months=sets[3],
            days_of_week=dow,
            dom_restricted=parts[2] != "*",
            dow_restricted=parts[4] != "*",
        )

    def matches_day(self, moment: datetime) -> bool:
        if moment.month not in self.months:
            return False
        # Python: Monday=0; cron: Sunday=0
        dow_ok = (moment.weekday() + 1) % 7 in self.days_of_week
        dom_ok = moment.day in self.days_of_month
        if self.dom_restricted and self.dow_restricted:
            return dom_ok or dow_ok
        return dom_ok and dow_ok

    def matches(self, moment: datetime) -> bool:
        return (
            moment.minute in self.minutes
            and moment.hour in self.hours
            and self.matches_day(moment)
        )

    def next_after(self, moment: datetime) -> datetime:
        """First matching minute strictly after ``moment``.

        Walks day by day, then over the (sorted) hours and minutes of a
        matching day, so sparse expressions stay cheap.

        Raises:
            CronError: Nothing matches within the search bound
                (e.g. ``0 0 31 2 *``).
        """
        start = moment.replace(second=0, microsecond=0) + timedelta(minutes=1)
        hours = sorted(self.hours)
        minutes = sorted(self.minutes)
        day = start.replace(hour=0, minute=0)

        for _ in range(_MAX_SEARCH_DAYS):
            if self.matches_day(day):
                for hour in hours:
                    for minute in minutes:
                        candidate = day.replace(hour=hour, minute=minute)
                        if candidate >= start:
                            return candidate
            day += timedelta(days=1)

        raise CronError(f"{self.source!r} never fires after {moment.isoformat()}")


def _parse_field(text: str, low: int, high: int, names: dict[str, int]) -> frozenset[int]:
    values: set[int] = set()
    for part in text.split(","):
        if not part:
            raise CronError(f"empty list element in {text!r}")
        base, _, step_text = part.partition("/")
        step = _number(step_text, names) if step_text else 1
        if step <= 0:
            raise CronError(f"step must be positive in {part!r}")

        if base == "*":
            first, last = low, high
        elif "-" in base:
            first_text, last_text = base.split("-", 1)
            first, last = _number(first_text, names), _number(last_text, names)
        else:
            first = _number(base, names)
            # "5/15" means from 5 to the end in steps of 15
            last = high if step_text else first

        if first > last:
            raise CronError(f"range start after end in {part!r}")
        if first < low or last > high:
            raise CronError(f"{part!r} outside [{low}, {high}]")
        values.update(range(first, last + 1, step))
    return frozenset(values)


def _number(text: str, names: dict[str, int]) -> int:
    upper = text.strip().upper()
    if upper in names:
        return names[upper]
    try:
        return int(upper)
    except ValueError:
        raise CronError(f"not a number or name: {text!r}") from None


def validate_cron(expression: str) -> None:
    """Raise CronError if ``expression`` is malformed."""
    CronExpression.parse(expression)


# =============================================================================
# Schedule evaluation
# =============================================================================

_FIXED_INTERVALS = {
    ScheduleFrequency.HOURLY: timedelta(hours=1),
    ScheduleFrequency.DAILY: timedelta(days=1),
    ScheduleFrequency.WEEKLY: timedelta(weeks=1),
}


def should_fire(schedule: JobSchedule, as_of: datetime) -> bool:
    """
    Whether ``schedule`` is due at ``as_of``.

    ON_DEMAND never fires on its own and ONCE fires only if it never ran.
    Otherwise a schedule fires once ``next_run_at`` has passed; a schedule
    that has never been planned fires immediately unless it carries a cron
    expression, in which case it waits for its first match.
    """
    if not schedule.is_active or schedule.frequency is ScheduleFrequency.ON_DEMAND:
        return False
    if schedule.frequency is ScheduleFrequency.ONCE:
        return schedule.last_run_at is None
    if schedule.next_run_at is not None:
        return as_of >= schedule.next_run_at
    if schedule.cron_expression:
        return CronExpression.parse(schedule.cron_expression).matches(as_of)
    return True


def compute_next_run(
    frequency: ScheduleFrequency,
    after: datetime,
    cron_expression: str | None = None,
) -> datetime | None:
    """
    When a schedule should next fire, given it last fired at ``after``.

    A cron expression takes precedence over the frequency interval.
    Monthly intervals are calendar months, clamped at month end.
    """
    if frequency in (ScheduleFrequency.ONCE, ScheduleFrequency.ON_DEMAND):
        return None
    if cron_expression:
        return CronExpression.parse(cron_expression).next_after(after)
    if frequency is ScheduleFrequency.MONTHLY:
        return add_months(after, 1)
    return after + _FIXED_INTERVALS[frequency]
