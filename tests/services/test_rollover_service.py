"""
Tests for filing_kernel.services.rollover_service.

A completed obligation rolls over once its completion has cleared the
one-month cooling-off window, exactly once, into the next period.  Annual
obligations prefer the registry's period end and otherwise move the current
period end on by one year.
"""

from datetime import date, datetime, timezone

import pytest

from filing_kernel.domain.ports import RegistryPeriod
from filing_kernel.domain.stages import ObligationKind, Stage
from filing_kernel.selectors.obligation_selector import ObligationSelector
from filing_kernel.services.due_date_service import DueDateService
from filing_kernel.services.rollover_service import RolloverService
from filing_kernel.services.workflow_service import WorkflowService


@pytest.fixture
def workflow(session, clock) -> WorkflowService:
    return WorkflowService(session, clock)


@pytest.fixture
def rollover(session, clock, registry) -> RolloverService:
    return RolloverService(session, clock, registry)


@pytest.fixture
def filed_vat(workflow, actor, clock):
    """VAT return for the quarter ended 2024-01-31, filed on 2024-03-10."""
    info = workflow.create_obligation(
        "client-1", ObligationKind.VAT_RETURN, "1_4_7_10", date(2024, 1, 15), actor
    )
    clock.set_time(datetime(2024, 3, 10, 10, 0, tzinfo=timezone.utc))
    workflow.transition(info.obligation_id, Stage.FILED_TO_HMRC, actor, confirmed=True)
    return info


def _filed_annual(workflow, actor, clock, client_ref="01234567"):
    clock.set_time(datetime(2024, 7, 1, 9, 0, tzinfo=timezone.utc))
    info = workflow.create_obligation(
        "client-2",
        ObligationKind.ANNUAL_ACCOUNTS,
        "annual:06-30",
        date(2024, 6, 30),
        actor,
        client_ref=client_ref,
    )
    workflow.transition(info.obligation_id, Stage.FILED_TO_COMPANIES_HOUSE, actor)
    clock.set_time(datetime(2024, 8, 1, 9, 0, tzinfo=timezone.utc))
    workflow.transition(info.obligation_id, Stage.FILED_TO_HMRC, actor, confirmed=True)
    return info


# =============================================================================
# Cooling-off
# =============================================================================


class TestCoolingOff:
    def test_nothing_inside_window(self, rollover, filed_vat, clock):
        clock.set_time(datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc))
        assert rollover.find_candidates() == []
        assert rollover.run() == []

    def test_rolls_over_after_window(self, rollover, filed_vat, clock):
        clock.set_time(datetime(2024, 4, 11, 9, 0, tzinfo=timezone.utc))
        outcomes = rollover.run()

        assert len(outcomes) == 1
        created = outcomes[0].created
        assert outcomes[0].source_obligation_id == filed_vat.obligation_id
        assert created.period_start == date(2024, 2, 1)
        assert created.period_end == date(2024, 4, 30)
        assert created.statutory_due_date == date(2024, 5, 31)
        assert created.current_stage is Stage.WAITING_FOR_QUARTER_END
        assert created.client_id == "client-1"

    def test_completion_exactly_at_cutoff(self, rollover, filed_vat, clock):
        clock.set_time(datetime(2024, 4, 10, 10, 0, tzinfo=timezone.utc))
        assert rollover.find_candidates() == [filed_vat.obligation_id]

    def test_cooling_off_configurable(self, session, clock, filed_vat):
        clock.set_time(datetime(2024, 4, 11, 9, 0, tzinfo=timezone.utc))
        slow = RolloverService(session, clock, cooling_off_months=2)
        assert slow.find_candidates() == []

    def test_explicit_as_of(self, rollover, filed_vat):
        assert rollover.find_candidates(datetime(2024, 4, 11, 9, 0, tzinfo=timezone.utc)) == [filed_vat.obligation_id]

    def test_open_obligation_not_a_candidate(self, rollover, workflow, actor, clock):
        workflow.create_obligation(
            "client-3", ObligationKind.VAT_RETURN, "2_5_8_11", date(2024, 1, 15), actor
        )
        clock.set_time(datetime(2025, 1, 1, tzinfo=timezone.utc))
        assert rollover.find_candidates() == []


class TestCoolingOffAcrossSessions:
    """Completion written and committed in one session, checked from another."""

    @pytest.fixture
    def committed_vat(self, session_factory, clock, actor):
        with session_factory() as writer:
            workflow = WorkflowService(writer, clock)
            info = workflow.create_obligation(
                "client-1", ObligationKind.VAT_RETURN, "1_4_7_10", date(2024, 1, 15), actor
            )
            clock.set_time(datetime(2024, 3, 10, 10, 0, tzinfo=timezone.utc))
            workflow.transition(info.obligation_id, Stage.FILED_TO_HMRC, actor, confirmed=True)
            writer.commit()
        return info

    def test_inside_window(self, session_factory, committed_vat, clock):
        clock.set_time(datetime(2024, 4, 10, 9, 0, tzinfo=timezone.utc))
        with session_factory() as reader:
            rollover = RolloverService(reader, clock)
            assert rollover.find_candidates() == []
            assert rollover.roll_over(committed_vat.obligation_id).reason == "cooling_off"

    def test_rolls_over_at_cutoff(self, session_factory, committed_vat, clock):
        clock.set_time(datetime(2024, 4, 10, 10, 0, tzinfo=timezone.utc))
        with session_factory() as reader:
            rollover = RolloverService(reader, clock)
            assert rollover.find_candidates() == [committed_vat.obligation_id]
            outcomes = rollover.run()
            reader.commit()

        assert outcomes[0].created.period_end == date(2024, 4, 30)

    def test_completed_at_reloads_as_utc(self, session_factory, committed_vat):
        with session_factory() as reader:
            info = ObligationSelector(reader).get(committed_vat.obligation_id)
        assert info.completed_at == datetime(2024, 3, 10, 10, 0, tzinfo=timezone.utc)


class TestExactlyOnce:
    def test_second_run_creates_nothing(self, rollover, filed_vat, clock):
        clock.set_time(datetime(2024, 4, 11, 9, 0, tzinfo=timezone.utc))
        rollover.run()
        clock.set_time(datetime(2024, 4, 12, 9, 0, tzinfo=timezone.utc))
        assert rollover.run() == []

    def test_direct_roll_over_after_success_skipped(self, rollover, filed_vat, clock, captured_logs):
        clock.set_time(datetime(2024, 4, 11, 9, 0, tzinfo=timezone.utc))
        rollover.run()
        outcome = rollover.roll_over(filed_vat.obligation_id)
        assert outcome.created is None
        assert outcome.reason == "newer_instance_exists"
        assert any(r["message"] == "rollover_skipped" for r in captured_logs())

    def test_roll_over_open_obligation_skipped(self, rollover, workflow, actor):
        info = workflow.create_obligation(
            "client-3", ObligationKind.VAT_RETURN, "2_5_8_11", date(2024, 1, 15), actor
        )
        assert rollover.roll_over(info.obligation_id).reason == "not_terminal"

    def test_roll_over_inside_window_skipped(self, rollover, filed_vat, clock):
        clock.set_time(datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc))
        assert rollover.roll_over(filed_vat.obligation_id).reason == "cooling_off"

    def test_history_notes_source_period(self, rollover, workflow, filed_vat, clock):
        clock.set_time(datetime(2024, 4, 11, 9, 0, tzinfo=timezone.utc))
        created = rollover.run()[0].created
        entry = workflow.ledger.query_for(created.obligation_id)[0]
        assert entry.notes == "Rolled over from period 2023-11-01_to_2024-01-31"
        assert entry.actor_id == "system"

    def test_single_open_instance_after_rollover(self, session, rollover, filed_vat, clock):
        clock.set_time(datetime(2024, 4, 11, 9, 0, tzinfo=timezone.utc))
        rollover.run()
        selector = ObligationSelector(session)
        instances = selector.list_for_client("client-1", ObligationKind.VAT_RETURN)
        assert len(instances) == 2
        assert sum(1 for i in instances if not i.is_terminal) == 1


# =============================================================================
# Annual obligations and the registry
# =============================================================================


class TestAnnualRollover:
    def test_registry_period_preferred(self, rollover, workflow, actor, clock, registry):
        info = _filed_annual(workflow, actor, clock)
        registry.periods["01234567"] = RegistryPeriod(
            period_end=date(2025, 3, 31),
            statutory_due_date=date(2025, 12, 31),
            confirmation_statement_due=date(2025, 5, 1),
        )
        clock.set_time(datetime(2024, 9, 2, 9, 0, tzinfo=timezone.utc))

        outcome = rollover.roll_over(info.obligation_id)

        assert outcome.used_registry
        created = outcome.created
        assert created.period_start == date(2024, 7, 1)
        assert created.period_end == date(2025, 3, 31)
        assert created.statutory_due_date == date(2025, 12, 31)
        assert created.confirmation_statement_due == date(2025, 5, 1)
        assert created.due_date_state.value == date(2026, 3, 31)
        assert created.current_stage is Stage.WAITING_FOR_YEAR_END

    def test_registry_corporation_tax_date_used(self, rollover, workflow, actor, clock, registry):
        info = _filed_annual(workflow, actor, clock)
        registry.periods["01234567"] = RegistryPeriod(
            period_end=date(2025, 6, 30), corporation_tax_due_date=date(2026, 4, 1)
        )
        clock.set_time(datetime(2024, 9, 2, 9, 0, tzinfo=timezone.utc))
        created = rollover.roll_over(info.obligation_id).created
        assert created.due_date_state.value == date(2026, 4, 1)
        assert created.statutory_due_date == date(2026, 3, 31)

    def test_registry_unavailable_falls_back(
        self, rollover, workflow, actor, clock, registry, captured_logs
    ):
        info = _filed_annual(workflow, actor, clock)
        registry.unavailable.add("01234567")
        clock.set_time(datetime(2024, 9, 2, 9, 0, tzinfo=timezone.utc))

        outcome = rollover.roll_over(info.obligation_id)

        assert not outcome.used_registry
        assert outcome.created.period_end == date(2025, 6, 30)
        assert outcome.created.due_date_state.value == date(2026, 6, 30)
        warnings = [r for r in captured_logs() if r["message"] == "registry_unavailable"]
        assert warnings[0]["reason"] == "timeout"

    def test_stale_registry_period_ignored(self, rollover, workflow, actor, clock, registry):
        info = _filed_annual(workflow, actor, clock)
        registry.periods["01234567"] = RegistryPeriod(period_end=date(2024, 6, 30))
        clock.set_time(datetime(2024, 9, 2, 9, 0, tzinfo=timezone.utc))
        outcome = rollover.roll_over(info.obligation_id)
        assert not outcome.used_registry
        assert outcome.created.period_end == date(2025, 6, 30)

    def test_no_client_ref_skips_registry(self, rollover, workflow, actor, clock, registry):
        info = _filed_annual(workflow, actor, clock, client_ref=None)
        clock.set_time(datetime(2024, 9, 2, 9, 0, tzinfo=timezone.utc))
        outcome = rollover.roll_over(info.obligation_id)
        assert registry.calls == []
        assert outcome.created.period_end == date(2025, 6, 30)

    def test_vat_never_consults_registry(self, rollover, filed_vat, clock, registry):
        clock.set_time(datetime(2024, 4, 11, 9, 0, tzinfo=timezone.utc))
        rollover.run()
        assert registry.calls == []

    def test_next_due_date_from_filing_carried(self, session, rollover, workflow, actor, clock):
        clock.set_time(datetime(2024, 7, 1, 9, 0, tzinfo=timezone.utc))
        info = workflow.create_obligation(
            "client-2", ObligationKind.ANNUAL_ACCOUNTS, "annual:06-30", date(2024, 6, 30), actor
        )
        workflow.transition(info.obligation_id, Stage.FILED_TO_COMPANIES_HOUSE, actor)
        DueDateService(session, clock, workflow).mark_filed(
            info.obligation_id, actor, confirmed=True, next_period_end=date(2025, 5, 31)
        )
        clock.set_time(datetime(2024, 9, 2, 9, 0, tzinfo=timezone.utc))
        created = rollover.roll_over(info.obligation_id).created
        assert created.due_date_state.value == date(2026, 5, 31)

    def test_moved_year_end_carried_forward_without_registry(
        self, rollover, workflow, actor, clock, registry
    ):
        first = _filed_annual(workflow, actor, clock)
        registry.periods["01234567"] = RegistryPeriod(period_end=date(2025, 12, 31))
        clock.set_time(datetime(2024, 9, 2, 9, 0, tzinfo=timezone.utc))
        second = rollover.roll_over(first.obligation_id).created
        assert second.period_end == date(2025, 12, 31)

        clock.set_time(datetime(2026, 1, 10, 9, 0, tzinfo=timezone.utc))
        workflow.transition(second.obligation_id, Stage.FILED_TO_COMPANIES_HOUSE, actor)
        workflow.transition(second.obligation_id, Stage.FILED_TO_HMRC, actor, confirmed=True)
        registry.unavailable.add("01234567")
        clock.set_time(datetime(2026, 2, 11, 9, 0, tzinfo=timezone.utc))

        outcome = rollover.roll_over(second.obligation_id)

        assert not outcome.used_registry
        third = outcome.created
        assert third.period_start == date(2026, 1, 1)
        assert third.period_end == date(2026, 12, 31)
        assert third.statutory_due_date == date(2027, 9, 30)


# =============================================================================
# Non-limited accounts
# =============================================================================


class TestNonLimitedRollover:
    @pytest.fixture
    def filed_sole_trader(self, workflow, actor, clock):
        clock.set_time(datetime(2025, 5, 1, 9, 0, tzinfo=timezone.utc))
        info = workflow.create_obligation(
            "client-4",
            ObligationKind.NON_LTD_ACCOUNTS,
            "annual:04-05",
            date(2025, 4, 5),
            actor,
            client_ref="SOLE-1",
        )
        clock.set_time(datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc))
        workflow.transition(info.obligation_id, Stage.FILED_TO_HMRC, actor, confirmed=True)
        return info

    def test_rolls_into_next_tax_year(self, rollover, filed_sole_trader, clock):
        clock.set_time(datetime(2025, 7, 2, 9, 0, tzinfo=timezone.utc))

        outcomes = rollover.run()

        assert len(outcomes) == 1
        created = outcomes[0].created
        assert created.kind is ObligationKind.NON_LTD_ACCOUNTS
        assert created.period_start == date(2025, 4, 6)
        assert created.period_end == date(2026, 4, 5)
        assert created.statutory_due_date == date(2027, 1, 5)
        assert created.current_stage is Stage.WAITING_FOR_YEAR_END

    def test_no_registry_and_no_due_date_state(self, rollover, filed_sole_trader, clock, registry):
        clock.set_time(datetime(2025, 7, 2, 9, 0, tzinfo=timezone.utc))
        outcome = rollover.roll_over(filed_sole_trader.obligation_id)
        assert registry.calls == []
        assert not outcome.used_registry
        assert outcome.created.due_date_state is None
