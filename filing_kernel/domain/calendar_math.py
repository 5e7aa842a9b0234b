"""
Calendar-aware date arithmetic.

Month and year addition clamp to the last day of the target month, so
31 Jan + 1 month = 28/29 Feb and 29 Feb 2024 + 1 year = 28 Feb 2025.
Never approximate months with day counts.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta
from typing import TypeVar

D = TypeVar("D", date, datetime)


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def end_of_month(d: date) -> date:
    """Return the last calendar day of ``d``'s month."""
    return date(d.year, d.month, last_day_of_month(d.year, d.month))


def start_of_month(d: date) -> date:
    return d.replace(day=1)


def add_months(d: D, months: int) -> D:
    """Add ``months`` calendar months to a date or datetime, clamping the day.

    Negative values move backwards.  Time-of-day and tzinfo on datetimes
    are preserved.
    """
    total = d.year * 12 + (d.month - 1) + months
    year, month_index = divmod(total, 12)
    month = month_index + 1
    day = min(d.day, last_day_of_month(year, month))
    return d.replace(year=year, month=month, day=day)


def add_years(d: D, years: int) -> D:
    return add_months(d, years * 12)


def clamp_day(year: int, month: int, day: int) -> date:
    """Build a date, clamping ``day`` to the month's length (29 Feb -> 28 Feb)."""
    return date(year, month, min(day, last_day_of_month(year, month)))


def days_between(start: date, end: date) -> int:
    return (end - start).days


def business_days_between(start: date, end: date) -> int:
    """Count Monday-Friday days in the half-open range ``[start, end)``."""
    if end <= start:
        return 0
    total = (end - start).days
    full_weeks, remainder = divmod(total, 7)
    count = full_weeks * 5
    cursor = start + timedelta(days=full_weeks * 7)
    for offset in range(remainder):
        if (cursor + timedelta(days=offset)).weekday() < 5:
            count += 1
    return count
