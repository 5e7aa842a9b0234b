"""Tests for the round-robin cursor and the auto-assignment eligibility gate."""

from datetime import date, datetime
from uuid import uuid4

import pytest

from filing_kernel.domain.assignment import (
    AssignmentCursor,
    auto_assignment_note,
    ineligibility_reason,
    is_assignment_eligible,
)
from filing_kernel.domain.dtos import ObligationInfo, Reviewer
from filing_kernel.domain.periods import CadenceGroup
from filing_kernel.domain.stages import ObligationKind, Stage
from filing_kernel.exceptions import ReviewerPoolUnavailableError

ALICE = Reviewer("p1", "Alice", "PARTNER")
BOB = Reviewer("p2", "Bob", "PARTNER")
CAROL = Reviewer("p3", "Carol", "PARTNER")


def _obligation(**overrides) -> ObligationInfo:
    values = dict(
        obligation_id=uuid4(),
        client_id="client-1",
        kind=ObligationKind.VAT_RETURN,
        cadence_group=CadenceGroup.quarterly("1_4_7_10"),
        period_start=date(2023, 11, 1),
        period_end=date(2024, 1, 31),
        statutory_due_date=date(2024, 2, 29),
        current_stage=Stage.PAPERWORK_PENDING_CHASE,
        is_terminal=False,
        version=1,
    )
    values.update(overrides)
    return ObligationInfo(**values)


class TestAssignmentCursor:
    def test_strict_rotation_from_index_zero(self):
        cursor = AssignmentCursor([ALICE, BOB, CAROL])
        picks = [cursor.next() for _ in range(7)]
        assert [r.reviewer_id for r in picks] == ["p1", "p2", "p3", "p1", "p2", "p3", "p1"]
        assert cursor.position == 7

    def test_inactive_reviewers_excluded(self):
        cursor = AssignmentCursor([ALICE, Reviewer("p9", "Gone", "PARTNER", is_active=False), BOB])
        assert len(cursor) == 2
        assert [cursor.next().reviewer_id for _ in range(3)] == ["p1", "p2", "p1"]

    def test_empty_pool(self):
        with pytest.raises(ReviewerPoolUnavailableError):
            AssignmentCursor([])

    def test_only_inactive(self):
        with pytest.raises(ReviewerPoolUnavailableError):
            AssignmentCursor([Reviewer("p9", "Gone", "PARTNER", is_active=False)])

    def test_fresh_cursor_restarts(self):
        first = AssignmentCursor([ALICE, BOB])
        first.next()
        assert AssignmentCursor([ALICE, BOB]).next() == ALICE


class TestEligibility:
    def test_eligible_on_filing_month(self):
        assert is_assignment_eligible(_obligation(), date(2024, 2, 1))

    def test_outside_filing_month(self):
        assert ineligibility_reason(_obligation(), date(2024, 3, 1)) == "outside_filing_month"

    def test_custom_filing_months(self):
        table = {"1_4_7_10": (3, 6, 9, 12)}
        assert is_assignment_eligible(_obligation(), date(2024, 3, 1), table)

    def test_already_assigned(self):
        ob = _obligation(assigned_reviewer_id="p1")
        assert ineligibility_reason(ob, date(2024, 2, 1)) == "already_assigned"

    def test_wrong_stage(self):
        ob = _obligation(current_stage=Stage.PAPERWORK_CHASED)
        assert ineligibility_reason(ob, date(2024, 2, 1)) == "not_in_first_working_stage"

    def test_awaiting_not_eligible(self):
        ob = _obligation(current_stage=Stage.WAITING_FOR_QUARTER_END)
        assert not is_assignment_eligible(ob, date(2024, 2, 1))

    def test_complete(self):
        ob = _obligation(
            current_stage=Stage.FILED_TO_HMRC,
            is_terminal=True,
            completed_at=datetime(2024, 2, 1),
        )
        assert ineligibility_reason(ob, date(2024, 2, 1)) == "obligation_complete"

    def test_annual_files_month_after_year_end(self):
        ob = _obligation(
            kind=ObligationKind.ANNUAL_ACCOUNTS,
            cadence_group=CadenceGroup.annual(6, 30),
            period_start=date(2023, 7, 1),
            period_end=date(2024, 6, 30),
        )
        assert is_assignment_eligible(ob, date(2024, 7, 1))
        assert not is_assignment_eligible(ob, date(2024, 8, 1))

    def test_non_limited_files_in_may(self):
        ob = _obligation(
            kind=ObligationKind.NON_LTD_ACCOUNTS,
            cadence_group=CadenceGroup.annual(4, 5),
            period_start=date(2024, 4, 6),
            period_end=date(2025, 4, 5),
            statutory_due_date=date(2026, 1, 5),
        )
        assert is_assignment_eligible(ob, date(2025, 5, 1))
        assert ineligibility_reason(ob, date(2025, 4, 6)) == "outside_filing_month"

    def test_note(self):
        assert auto_assignment_note(ALICE, date(2024, 2, 1)) == (
            "Auto-assigned to Alice for chasing on 1st of filing month (2/2024)"
        )
