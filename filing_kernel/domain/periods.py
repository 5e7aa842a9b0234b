"""
Period calculator -- cadence groups, period boundaries and statutory due dates.

Responsibility:
    Given a client's cadence group and an explicit reference date, derive
    the obligation period (start, end) and its statutory filing deadline.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O, no clock reads.  Same
    inputs always produce the same output.

Rules:
    Quarterly  The group lists the four period-end months.  The period
               ends on the last day of the first group month at or after
               the reference month, spans exactly three calendar months,
               and is due on the last day of the following month.
    Annual     The period ends on the anchor date's next occurrence on or
               after the reference date and starts the day after the
               previous occurrence.  Accounts are due a configurable number
               of months later (9 by default), keeping month-end alignment.

    A reference date equal to a period end returns that (just-ended)
    period.  Callers that want the following period pass the day after.

    Rolling an existing annual period forward uses
    ``next_annual_period_end``: the old end plus one year, month-end
    aligned.  The cadence anchor is only used to place a first period, so
    a year end moved by the registry carries forward.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum
from typing import Mapping

from filing_kernel.domain.calendar_math import (
    add_months,
    add_years,
    clamp_day,
    end_of_month,
    last_day_of_month,
    start_of_month,
)
from filing_kernel.exceptions import InvalidCadenceGroupError

DEFAULT_ACCOUNTS_DUE_MONTHS = 9


class QuarterGroup(str, Enum):
    """The three mutually exclusive quarterly groups, named by period-end months."""

    JAN_APR_JUL_OCT = "1_4_7_10"
    FEB_MAY_AUG_NOV = "2_5_8_11"
    MAR_JUN_SEP_DEC = "3_6_9_12"

    @property
    def period_end_months(self) -> tuple[int, ...]:
        return tuple(int(m) for m in self.value.split("_"))


# Period-end group -> months in which that group's returns are chased.
DEFAULT_FILING_MONTHS: dict[str, tuple[int, ...]] = {
    QuarterGroup.JAN_APR_JUL_OCT.value: (2, 5, 8, 11),
    QuarterGroup.FEB_MAY_AUG_NOV.value: (3, 6, 9, 12),
    QuarterGroup.MAR_JUN_SEP_DEC.value: (4, 7, 10, 1),
}

_ANNUAL_PREFIX = "annual:"


@dataclass(frozen=True)
class CadenceGroup:
    """Which months an obligation's periods end in.

    Exactly one of ``quarter_group`` or the annual anchor
    (``anchor_month``, ``anchor_day``) is set.
    """

    quarter_group: QuarterGroup | None = None
    anchor_month: int | None = None
    anchor_day: int | None = None

    def __post_init__(self) -> None:
        has_anchor = self.anchor_month is not None or self.anchor_day is not None
        if (self.quarter_group is None) == (not has_anchor):
            raise InvalidCadenceGroupError(
                repr(self), "exactly one of quarter group or annual anchor is required"
            )
        if has_anchor:
            if self.anchor_month is None or self.anchor_day is None:
                raise InvalidCadenceGroupError(repr(self), "anchor needs month and day")
            if not 1 <= self.anchor_month <= 12:
                raise InvalidCadenceGroupError(
                    repr(self), f"anchor month {self.anchor_month} out of range"
                )
            # 2000 is a leap year, so 29 Feb is an acceptable anchor
            if not 1 <= self.anchor_day <= last_day_of_month(2000, self.anchor_month):
                raise InvalidCadenceGroupError(
                    repr(self), f"anchor day {self.anchor_day} out of range"
                )

    @classmethod
    def quarterly(cls, group: QuarterGroup | str) -> CadenceGroup:
        try:
            return cls(quarter_group=QuarterGroup(group))
        except ValueError:
            raise InvalidCadenceGroupError(str(group)) from None

    @classmethod
    def annual(cls, month: int, day: int) -> CadenceGroup:
        return cls(anchor_month=month, anchor_day=day)

    @classmethod
    def parse(cls, code: str) -> CadenceGroup:
        """Parse a persisted code: ``"1_4_7_10"`` or ``"annual:06-30"``."""
        if code.startswith(_ANNUAL_PREFIX):
            try:
                month_str, day_str = code[len(_ANNUAL_PREFIX):].split("-")
                return cls.annual(int(month_str), int(day_str))
            except ValueError:
                raise InvalidCadenceGroupError(code, "malformed annual anchor") from None
        return cls.quarterly(code)

    @property
    def is_quarterly(self) -> bool:
        return self.quarter_group is not None

    @property
    def code(self) -> str:
        if self.quarter_group is not None:
            return self.quarter_group.value
        return f"{_ANNUAL_PREFIX}{self.anchor_month:02d}-{self.anchor_day:02d}"

    def __str__(self) -> str:
        return self.code


@dataclass(frozen=True)
class ObligationPeriod:
    """One computed obligation period."""

    period_start: date
    period_end: date
    statutory_due_date: date
    cadence_group: CadenceGroup

    @property
    def label(self) -> str:
        return period_label(self.period_start, self.period_end)

    def contains(self, d: date) -> bool:
        return self.period_start <= d <= self.period_end


# =============================================================================
# Period computation
# =============================================================================


def compute_period(
    cadence_group: CadenceGroup,
    reference_date: date,
    *,
    accounts_due_months: int = DEFAULT_ACCOUNTS_DUE_MONTHS,
) -> ObligationPeriod:
    """Return the period containing (or ending on) ``reference_date``."""
    if cadence_group.quarter_group is not None:
        return _quarterly_period(cadence_group, reference_date)
    return _annual_period(cadence_group, reference_date, accounts_due_months)


def next_period(
    cadence_group: CadenceGroup,
    current_period_end: date,
    *,
    accounts_due_months: int = DEFAULT_ACCOUNTS_DUE_MONTHS,
) -> ObligationPeriod:
    """Return the period immediately following one that ends on ``current_period_end``."""
    return compute_period(
        cadence_group,
        current_period_end + timedelta(days=1),
        accounts_due_months=accounts_due_months,
    )


def next_annual_period_end(period_end: date) -> date:
    """One year after ``period_end``, keeping month-end alignment."""
    following = add_years(period_end, 1)
    if period_end == end_of_month(period_end):
        return end_of_month(following)
    return following


def _quarterly_period(cadence_group: CadenceGroup, reference_date: date) -> ObligationPeriod:
    months = cadence_group.quarter_group.period_end_months
    year = reference_date.year
    end_month = next((m for m in months if m >= reference_date.month), None)
    if end_month is None:
        end_month = months[0]
        year += 1

    period_end = date(year, end_month, last_day_of_month(year, end_month))
    period_start = start_of_month(add_months(period_end, -2))
    return ObligationPeriod(
        period_start=period_start,
        period_end=period_end,
        statutory_due_date=end_of_month(add_months(period_end, 1)),
        cadence_group=cadence_group,
    )


def _annual_period(
    cadence_group: CadenceGroup,
    reference_date: date,
    accounts_due_months: int,
) -> ObligationPeriod:
    month, day = cadence_group.anchor_month, cadence_group.anchor_day
    period_end = clamp_day(reference_date.year, month, day)
    if period_end < reference_date:
        period_end = clamp_day(reference_date.year + 1, month, day)

    previous_end = clamp_day(period_end.year - 1, month, day)
    return ObligationPeriod(
        period_start=previous_end + timedelta(days=1),
        period_end=period_end,
        statutory_due_date=accounts_due_date(period_end, accounts_due_months),
        cadence_group=cadence_group,
    )


def accounts_due_date(
    period_end: date, months: int = DEFAULT_ACCOUNTS_DUE_MONTHS
) -> date:
    """Accounts filing deadline: ``months`` after period end, month-end aligned."""
    due = add_months(period_end, months)
    if period_end == end_of_month(period_end):
        return end_of_month(due)
    return due


# =============================================================================
# Filing calendar
# =============================================================================


def filing_months(
    cadence_group: CadenceGroup,
    table: Mapping[str, tuple[int, ...]] | None = None,
) -> frozenset[int]:
    """Calendar months in which obligations of this cadence are chased.

    Annual cadences file in the month after the anchor month.
    """
    if cadence_group.quarter_group is not None:
        lookup = DEFAULT_FILING_MONTHS if table is None else table
        try:
            return frozenset(lookup[cadence_group.quarter_group.value])
        except KeyError:
            raise InvalidCadenceGroupError(
                cadence_group.code, "no filing months configured"
            ) from None
    return frozenset({cadence_group.anchor_month % 12 + 1})


def is_filing_month(
    cadence_group: CadenceGroup,
    on: date,
    table: Mapping[str, tuple[int, ...]] | None = None,
) -> bool:
    return on.month in filing_months(cadence_group, table)


# =============================================================================
# Display / deadline helpers
# =============================================================================


def period_label(period_start: date, period_end: date) -> str:
    return f"{period_start.isoformat()}_to_{period_end.isoformat()}"


def is_overdue(due_date: date, today: date) -> bool:
    return today > due_date


def days_until(due_date: date, today: date) -> int:
    """Days until ``due_date``; negative once overdue."""
    return (due_date - today).days


def compute_year_end(
    accounting_reference_month: int | None,
    accounting_reference_day: int | None,
    *,
    today: date,
    last_accounts_made_up_to: date | None = None,
    incorporation_date: date | None = None,
) -> date | None:
    """Derive a company's next year end from registry data.

    Priority:
        1. Last accounts made up to + 1 year.
        2. First-time filer: first accounting reference date after
           incorporation, pushed a year if it falls less than six months
           after incorporation.
        3. Next occurrence of the accounting reference date after today.

    Returns None when there is nothing to compute from.
    """
    if last_accounts_made_up_to is not None:
        return add_years(last_accounts_made_up_to, 1)

    if accounting_reference_month is None or accounting_reference_day is None:
        return None

    month, day = accounting_reference_month, accounting_reference_day

    if incorporation_date is not None:
        first = clamp_day(incorporation_date.year, month, day)
        if first <= incorporation_date or add_months(incorporation_date, 6) > first:
            first = clamp_day(incorporation_date.year + 1, month, day)
        return first

    year_end = clamp_day(today.year, month, day)
    if year_end <= today:
        year_end = clamp_day(today.year + 1, month, day)
    return year_end
