"""
Tests for filing_kernel.services.notifications.

Covers immediate delivery, sink failure isolation and the deferred block
that holds events until the surrounding work completes.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from filing_kernel.domain.dtos import NotificationEvent
from filing_kernel.domain.stages import ObligationKind, Stage
from filing_kernel.services.notifications import NotificationDispatcher


class BrokenSink:
    def publish(self, event) -> None:
        raise ConnectionError("sink offline")


def _event(to_stage: Stage = Stage.FILED_TO_HMRC) -> NotificationEvent:
    return NotificationEvent(
        obligation_id=uuid4(),
        client_id="client-1",
        kind=ObligationKind.ANNUAL_ACCOUNTS,
        from_stage=Stage.FILED_TO_COMPANIES_HOUSE,
        to_stage=to_stage,
        actor_id="user-1",
        occurred_at=datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc),
    )


# =============================================================================
# Delivery
# =============================================================================


class TestDelivery:
    def test_emit_publishes_immediately(self, notifier, sink):
        event = _event()
        notifier.emit(event)
        assert sink.events == [event]

    def test_failing_sink_skipped(self, sink, captured_logs):
        dispatcher = NotificationDispatcher([BrokenSink(), sink])
        dispatcher.emit(_event())

        assert len(sink.events) == 1
        assert any(r["message"] == "notification_delivery_failed" for r in captured_logs())


# =============================================================================
# Deferred blocks
# =============================================================================


class TestDeferred:
    def test_held_until_block_exits(self, notifier, sink):
        with notifier.deferred():
            notifier.emit(_event())
            assert sink.events == []
        assert len(sink.events) == 1

    def test_dropped_when_block_raises(self, notifier, sink, captured_logs):
        with pytest.raises(ValueError):
            with notifier.deferred():
                notifier.emit(_event())
                raise ValueError("rolled back")

        assert sink.events == []
        assert any(r["message"] == "notifications_discarded" for r in captured_logs())

        notifier.emit(_event())
        assert len(sink.events) == 1

    def test_nested_block_defers_to_outermost(self, notifier, sink):
        with notifier.deferred():
            with notifier.deferred():
                notifier.emit(_event(Stage.FILED_TO_COMPANIES_HOUSE))
            assert sink.events == []
            notifier.emit(_event())

        assert [e.to_stage for e in sink.events] == [
            Stage.FILED_TO_COMPANIES_HOUSE,
            Stage.FILED_TO_HMRC,
        ]
