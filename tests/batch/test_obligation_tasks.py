"""
Tests for filing_batch.tasks.obligation_tasks run through BatchExecutor.

The tasks adapt the kernel's rollover, promotion and assignment services
to the batch protocol; these tests drive whole jobs end to end.
"""

from datetime import date, datetime, timezone

import pytest

from filing_batch.domain.types import BatchItemStatus, BatchJobStatus
from filing_batch.orchestrator import build_task_registry
from filing_batch.services.executor import BatchExecutor
from filing_batch.tasks.base import BatchItemInput
from filing_batch.tasks.obligation_tasks import AutoAssignTask, ObligationTaskContext
from filing_kernel.domain.stages import ObligationKind, Stage
from filing_kernel.selectors.obligation_selector import ObligationSelector
from filing_kernel.services.workflow_service import WorkflowService


@pytest.fixture
def workflow(session, clock) -> WorkflowService:
    return WorkflowService(session, clock)


@pytest.fixture
def executor(session, clock, registry, directory, sink) -> BatchExecutor:
    tasks = build_task_registry(
        clock=clock, registry_lookup=registry, directory=directory, sinks=[sink]
    )
    return BatchExecutor(session, tasks, clock)


def _create_vat(workflow, actor, client_id, reference=date(2024, 1, 15)):
    return workflow.create_obligation(
        client_id, ObligationKind.VAT_RETURN, "1_4_7_10", reference, actor
    )


class TestAutoAssignJob:
    def test_round_robin_job(self, executor, workflow, actor, session):
        created = [_create_vat(workflow, actor, c) for c in ("c1", "c2", "c3")]

        result = executor.run_now("auto-assign", "obligations.auto_assign", "system")

        assert result.status is BatchJobStatus.COMPLETED
        assert [r.result_data["reviewer_id"] for r in result.item_results] == ["p1", "p2", "p1"]
        selector = ObligationSelector(session)
        assert selector.get(created[1].obligation_id).assigned_reviewer_id == "p2"

    def test_nothing_outside_filing_month(self, executor, workflow, actor, clock):
        _create_vat(workflow, actor, "c1")
        clock.set_time(datetime(2024, 3, 1, 6, 0, tzinfo=timezone.utc))
        result = executor.run_now("auto-assign", "obligations.auto_assign", "system")
        assert result.status is BatchJobStatus.COMPLETED
        assert result.total_items == 0

    def test_pool_failure_fails_job(self, executor, workflow, actor, directory):
        _create_vat(workflow, actor, "c1")
        directory.fail = True
        result = executor.run_now("auto-assign", "obligations.auto_assign", "system")
        assert result.status is BatchJobStatus.FAILED
        assert "prepare_items failed" in result.error_summary

    def test_item_no_longer_eligible_is_skipped(self, session, clock, directory, workflow, actor):
        info = _create_vat(workflow, actor, "c1")
        workflow.record_assignment(info.obligation_id, "p9", actor)
        task = AutoAssignTask(ObligationTaskContext(clock=clock, directory=directory))
        item = BatchItemInput(
            item_index=0,
            item_key=str(info.obligation_id),
            payload={
                "obligation_id": str(info.obligation_id),
                "reviewer_id": "p1",
                "reviewer_name": "Alice Partner",
                "reviewer_role": "PARTNER",
            },
        )

        result = task.execute_item(item=item, parameters={}, session=session, as_of=clock.now())

        assert result.status is BatchItemStatus.SKIPPED
        assert result.result_data == {"reason": "already_assigned"}


class TestRolloverJob:
    def test_rollover_job(self, executor, workflow, actor, clock):
        info = _create_vat(workflow, actor, "c1")
        clock.set_time(datetime(2024, 3, 10, 10, 0, tzinfo=timezone.utc))
        workflow.transition(info.obligation_id, Stage.FILED_TO_HMRC, actor, confirmed=True)

        clock.set_time(datetime(2024, 4, 11, 1, 30, tzinfo=timezone.utc))
        result = executor.run_now("rollover", "obligations.rollover", "system")

        assert result.status is BatchJobStatus.COMPLETED
        data = result.item_results[0].result_data
        assert data["period_start"] == "2024-02-01"
        assert data["period_end"] == "2024-04-30"
        assert data["used_registry"] is False

        again = executor.run_now("rollover", "obligations.rollover", "system")
        assert again.total_items == 0


class TestPromoteJob:
    def test_promote_job(self, executor, workflow, actor, clock, sink, session):
        info = _create_vat(workflow, actor, "c1", reference=date(2024, 3, 15))
        clock.set_time(datetime(2024, 5, 1, 1, 0, tzinfo=timezone.utc))

        result = executor.run_now("promote", "obligations.promote_awaiting", "system")

        assert (result.status, result.succeeded) == (BatchJobStatus.COMPLETED, 1)
        promoted = ObligationSelector(session).get(info.obligation_id)
        assert promoted.current_stage is Stage.PAPERWORK_PENDING_CHASE
        assert [e.to_stage for e in sink.events] == [Stage.PAPERWORK_PENDING_CHASE]
