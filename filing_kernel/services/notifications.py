"""
NotificationDispatcher -- hands workflow events to external sinks.

Delivery is fire-and-forget: a failing sink is logged and skipped, and
never rolls back the transition that produced the event.

Inside ``deferred()`` events are queued instead of delivered. They go out
when the block exits cleanly and are dropped when it raises, so a caller
wrapping several writes in one savepoint only announces work that stuck.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from filing_kernel.domain.dtos import NotificationEvent
from filing_kernel.domain.ports import NotificationSink
from filing_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class NotificationDispatcher:
    def __init__(self, sinks: Iterable[NotificationSink] = ()):
        self._sinks = tuple(sinks)
        self._pending: list[NotificationEvent] | None = None

    @contextmanager
    def deferred(self) -> Iterator[None]:
        """Hold events raised inside the block until it completes."""
        if self._pending is not None:
            # Nested: the outermost block decides.
            yield
            return

        self._pending = []
        try:
            yield
        except BaseException:
            dropped = self._pending
            self._pending = None
            if dropped:
                logger.info(
                    "notifications_discarded",
                    extra={
                        "count": len(dropped),
                        "obligation_ids": sorted({str(e.obligation_id) for e in dropped}),
                    },
                )
            raise
        queued, self._pending = self._pending, None
        for event in queued:
            self._deliver(event)

    def emit(self, event: NotificationEvent) -> None:
        if self._pending is not None:
            self._pending.append(event)
            return
        self._deliver(event)

    def _deliver(self, event: NotificationEvent) -> None:
        logger.info(
            "notification_emitted",
            extra={
                "event_type": event.event_type,
                "obligation_id": str(event.obligation_id),
                "from_stage": event.from_stage.value if event.from_stage else None,
                "to_stage": event.to_stage.value,
                "sink_count": len(self._sinks),
            },
        )
        for sink in self._sinks:
            try:
                sink.publish(event)
            except Exception:
                logger.warning(
                    "notification_delivery_failed",
                    extra={
                        "event_type": event.event_type,
                        "obligation_id": str(event.obligation_id),
                        "sink": type(sink).__name__,
                    },
                    exc_info=True,
                )
