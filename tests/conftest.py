"""
Pytest fixtures for the filing engine test suite.

Provides:
- In-memory SQLite sessions (one fresh database per test)
- File-backed SQLite session factories for multi-session tests
- A DeterministicClock pinned to an aware UTC instant
- Fake collaborators: registry lookup, reviewer directory, notification sink
- Structured-log capture
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import filing_batch.models.batch  # noqa: F401
import filing_kernel.models  # noqa: F401
from filing_kernel.db.base import Base
from filing_kernel.db.engine import enable_sqlite_savepoints
from filing_kernel.domain.clock import DeterministicClock
from filing_kernel.domain.dtos import Actor, Reviewer
from filing_kernel.domain.ports import RegistryPeriod
from filing_kernel.exceptions import RegistryUnavailableError
from filing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from filing_kernel.services.notifications import NotificationDispatcher

TEST_ACTOR = Actor(actor_id="user-1", name="Test User")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture filing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow):
            workflow.transition(...)
            logs = captured_logs()
            assert any(r["message"] == "obligation_transitioned" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("filing_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(eng)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine) -> Session:
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    sess = factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def session_factory(tmp_path):
    """Factory over a file-backed database, for tests that need several sessions."""
    eng = create_engine(f"sqlite:///{tmp_path / 'filing.db'}")
    enable_sqlite_savepoints(eng)
    Base.metadata.create_all(eng)
    yield sessionmaker(bind=eng, expire_on_commit=False)
    eng.dispose()


# =============================================================================
# Clock and actors
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    """Aware UTC clock, the same frame SystemClock and the database use."""
    return DeterministicClock(datetime(2024, 2, 1, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def actor() -> Actor:
    return TEST_ACTOR


# =============================================================================
# Fake collaborators
# =============================================================================


class FakeRegistry:
    """RegistryLookup returning canned periods per client_ref."""

    def __init__(self):
        self.periods: dict[str, RegistryPeriod | None] = {}
        self.unavailable: set[str] = set()
        self.calls: list[str] = []

    def fetch_authoritative_period_end(self, client_ref: str) -> RegistryPeriod | None:
        self.calls.append(client_ref)
        if client_ref in self.unavailable:
            raise RegistryUnavailableError(client_ref, "timeout")
        return self.periods.get(client_ref)


class FakeDirectory:
    """ReviewerDirectory backed by a mutable list."""

    def __init__(self, reviewers=()):
        self.reviewers: list[Reviewer] = list(reviewers)
        self.fail = False

    def list_eligible_reviewers(self, role: str) -> list[Reviewer]:
        if self.fail:
            raise RuntimeError("directory offline")
        return [r for r in self.reviewers if r.role == role]


class RecordingSink:
    def __init__(self):
        self.events = []

    def publish(self, event) -> None:
        self.events.append(event)


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def reviewers() -> list[Reviewer]:
    return [
        Reviewer("p1", "Alice Partner", "PARTNER"),
        Reviewer("p2", "Bob Partner", "PARTNER"),
    ]


@pytest.fixture
def directory(reviewers) -> FakeDirectory:
    return FakeDirectory(reviewers)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def notifier(sink) -> NotificationDispatcher:
    return NotificationDispatcher([sink])
