"""
Tests for filing_kernel.services.assignment_service.

Scenario: three VAT clients in group 1_4_7_10 whose quarter ended on
2024-01-31.  On 1 February (a filing month for that group) a run over
two partners assigns them p1, p2, p1.
"""

from datetime import date, datetime, timezone

import pytest

from filing_kernel.domain.dtos import Reviewer
from filing_kernel.domain.stages import MilestoneField, ObligationKind, Stage
from filing_kernel.exceptions import ReviewerPoolUnavailableError
from filing_kernel.selectors.obligation_selector import ObligationSelector
from filing_kernel.services.assignment_service import AssignmentService
from filing_kernel.services.workflow_service import WorkflowService

FEB_1 = date(2024, 2, 1)


@pytest.fixture
def workflow(session, clock) -> WorkflowService:
    return WorkflowService(session, clock)


@pytest.fixture
def service(session, clock, directory, notifier) -> AssignmentService:
    return AssignmentService(session, clock, directory, notifier)


@pytest.fixture
def obligations(workflow, actor):
    return [
        workflow.create_obligation(
            client_id, ObligationKind.VAT_RETURN, "1_4_7_10", date(2024, 1, 15), actor
        )
        for client_id in ("c1", "c2", "c3")
    ]


def _reload(session, info):
    return ObligationSelector(session).get(info.obligation_id)


# =============================================================================
# Scheduled runs
# =============================================================================


class TestRoundRobin:
    def test_rotation(self, service, obligations, session):
        outcomes = service.run(FEB_1)

        assert [o.reviewer_id for o in outcomes] == ["p1", "p2", "p1"]
        assert all(o.assigned for o in outcomes)
        assert [_reload(session, o).assigned_reviewer_id for o in obligations] == [
            "p1",
            "p2",
            "p1",
        ]

    def test_stage_unchanged_and_milestone_attributed(self, service, obligations, session):
        service.run(FEB_1)
        info = _reload(session, obligations[1])

        assert info.current_stage is Stage.PAPERWORK_PENDING_CHASE
        stamp = info.milestone(MilestoneField.CHASE_STARTED)
        assert stamp.actor_id == "p2"
        assert stamp.actor_name == "Bob Partner"

    def test_history_entry(self, service, workflow, obligations):
        service.run(FEB_1)
        entry = workflow.ledger.query_for(obligations[0].obligation_id)[-1]
        assert entry.from_stage is entry.to_stage is Stage.PAPERWORK_PENDING_CHASE
        assert entry.actor_id == "system"
        assert entry.notes == (
            "Auto-assigned to Alice Partner for chasing on 1st of filing month (2/2024)"
        )

    def test_rerun_assigns_nothing(self, service, obligations):
        service.run(FEB_1)
        assert service.run(date(2024, 2, 2)) == []

    def test_outside_filing_month(self, service, obligations):
        assert service.find_eligible(date(2024, 3, 1)) == []
        assert service.run(date(2024, 3, 1)) == []

    def test_non_limited_accounts_chased_in_may(self, service, workflow, actor, clock):
        clock.set_time(datetime(2025, 4, 20, 9, 0, tzinfo=timezone.utc))
        sole = workflow.create_obligation(
            "sole-1", ObligationKind.NON_LTD_ACCOUNTS, "annual:04-05", date(2025, 4, 5), actor
        )

        assert service.find_eligible(date(2025, 4, 20)) == []
        outcomes = service.run(date(2025, 5, 1))

        assert [o.obligation_id for o in outcomes] == [sole.obligation_id]
        assert outcomes[0].reviewer_id == "p1"

    def test_rotation_restarts_each_run(self, service, workflow, obligations, actor):
        service.run(FEB_1)
        late = workflow.create_obligation(
            "c4", ObligationKind.VAT_RETURN, "1_4_7_10", date(2024, 1, 15), actor
        )
        outcomes = service.run(date(2024, 2, 2))
        assert [(o.obligation_id, o.reviewer_id) for o in outcomes] == [
            (late.obligation_id, "p1")
        ]

    def test_awaiting_and_assigned_excluded(self, service, workflow, obligations, actor):
        workflow.record_assignment(obligations[0].obligation_id, "p9", actor)
        workflow.create_obligation(
            "c5", ObligationKind.VAT_RETURN, "1_4_7_10", date(2024, 3, 15), actor
        )
        eligible = service.find_eligible(FEB_1)
        assert eligible == [obligations[1].obligation_id, obligations[2].obligation_id]

    def test_cursor_advances_past_skipped(self, service, workflow, obligations, actor, monkeypatch):
        # c2 is assigned manually after the scan; its turn is still consumed
        ids = [o.obligation_id for o in obligations]
        monkeypatch.setattr(service, "find_eligible", lambda today=None: ids)
        workflow.record_assignment(ids[1], "p9", actor)

        outcomes = service.run(FEB_1)

        assert [(o.assigned, o.reason) for o in outcomes] == [
            (True, None),
            (False, "already_assigned"),
            (True, None),
        ]
        assert outcomes[2].reviewer_id == "p1"

    def test_notifications(self, service, obligations, sink):
        service.run(FEB_1)
        assert [e.event_type for e in sink.events] == ["reviewer_assigned"] * 3
        assert [e.assigned_reviewer_id for e in sink.events] == ["p1", "p2", "p1"]


# =============================================================================
# Reviewer pool
# =============================================================================


class TestReviewerPool:
    def test_inactive_reviewers_skipped(self, service, directory, obligations):
        directory.reviewers.insert(0, Reviewer("p0", "Zed Former", "PARTNER", is_active=False))
        outcomes = service.run(FEB_1)
        assert [o.reviewer_id for o in outcomes] == ["p1", "p2", "p1"]

    def test_empty_pool(self, service, directory, obligations):
        directory.reviewers.clear()
        with pytest.raises(ReviewerPoolUnavailableError):
            service.run(FEB_1)

    def test_directory_failure(self, service, directory, obligations, session):
        directory.fail = True
        with pytest.raises(ReviewerPoolUnavailableError):
            service.run(FEB_1)
        assert _reload(session, obligations[0]).assigned_reviewer_id is None

    def test_no_directory(self, session, clock, obligations):
        with pytest.raises(ReviewerPoolUnavailableError):
            AssignmentService(session, clock).run(FEB_1)

    def test_other_role(self, session, clock, directory, obligations):
        directory.reviewers.append(Reviewer("m1", "Mia Manager", "MANAGER"))
        service = AssignmentService(session, clock, directory, reviewer_role="MANAGER")
        assert {o.reviewer_id for o in service.run(FEB_1)} == {"m1"}


# =============================================================================
# On-demand
# =============================================================================


class TestOnDemand:
    def test_assigns_first_reviewer(self, service, obligations):
        outcome = service.assign_on_demand(obligations[2].obligation_id, FEB_1)
        assert outcome.assigned
        assert outcome.reviewer_id == "p1"

    def test_same_filter_applies(self, service, obligations):
        outcome = service.assign_on_demand(obligations[0].obligation_id, date(2024, 3, 1))
        assert not outcome.assigned
        assert outcome.reason == "outside_filing_month"

    def test_terminal_obligation(self, service, workflow, obligations, actor):
        workflow.transition(
            obligations[0].obligation_id, Stage.CLIENT_SELF_FILING, actor, confirmed=True
        )
        outcome = service.assign_on_demand(obligations[0].obligation_id, FEB_1)
        assert outcome.reason == "obligation_complete"
