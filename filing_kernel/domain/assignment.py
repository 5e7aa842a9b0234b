"""
Round-robin assignment rules -- pure, no I/O.

The cursor is scoped to one run: every run (scheduled or on demand) builds
a fresh cursor from the reviewer list it just fetched and starts at index
0.  Nothing about the cursor is persisted.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date

from filing_kernel.domain.dtos import ObligationInfo, Reviewer
from filing_kernel.domain.periods import filing_months
from filing_kernel.domain.stages import catalog_for
from filing_kernel.exceptions import ReviewerPoolUnavailableError

DEFAULT_REVIEWER_ROLE = "PARTNER"


class AssignmentCursor:
    """Hands out reviewers in strict rotation, starting at index 0."""

    def __init__(self, reviewers: Sequence[Reviewer], role: str = DEFAULT_REVIEWER_ROLE):
        self._pool = tuple(r for r in reviewers if r.is_active)
        if not self._pool:
            raise ReviewerPoolUnavailableError(role)
        self._index = 0

    def __len__(self) -> int:
        return len(self._pool)

    @property
    def position(self) -> int:
        return self._index

    @property
    def reviewers(self) -> tuple[Reviewer, ...]:
        return self._pool

    def next(self) -> Reviewer:
        reviewer = self._pool[self._index % len(self._pool)]
        self._index += 1
        return reviewer


def ineligibility_reason(
    obligation: ObligationInfo,
    today: date,
    filing_months_table: Mapping[str, tuple[int, ...]] | None = None,
) -> str | None:
    """Why ``obligation`` cannot be auto-assigned today, or None if it can."""
    catalog = catalog_for(obligation.kind)
    if obligation.is_terminal:
        return "obligation_complete"
    if obligation.current_stage != catalog.first_working_stage.stage:
        return "not_in_first_working_stage"
    if obligation.assigned_reviewer_id is not None:
        return "already_assigned"
    if today.month not in filing_months(obligation.cadence_group, filing_months_table):
        return "outside_filing_month"
    return None


def is_assignment_eligible(
    obligation: ObligationInfo,
    today: date,
    filing_months_table: Mapping[str, tuple[int, ...]] | None = None,
) -> bool:
    return ineligibility_reason(obligation, today, filing_months_table) is None


def auto_assignment_note(reviewer: Reviewer, today: date) -> str:
    return (
        f"Auto-assigned to {reviewer.name} for chasing on 1st of filing month "
        f"({today.month}/{today.year})"
    )
