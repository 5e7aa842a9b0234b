"""
Collaborator interfaces the engine consumes or feeds.

Adapters for the company registry, the staff directory and notification
delivery live outside the kernel and are injected into services.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Protocol, Sequence, runtime_checkable

from filing_kernel.domain.dtos import NotificationEvent, Reviewer


@dataclass(frozen=True)
class RegistryPeriod:
    """Authoritative dates reported by the company registry."""

    period_end: date
    statutory_due_date: date | None = None
    corporation_tax_due_date: date | None = None
    confirmation_statement_due: date | None = None


@runtime_checkable
class RegistryLookup(Protocol):
    """Company registry lookup.

    Returns None when the registry has nothing for the client.  May raise
    RegistryUnavailableError; callers treat both as "fall back to the
    calendar".
    """

    def fetch_authoritative_period_end(self, client_ref: str) -> RegistryPeriod | None:
        ...


@runtime_checkable
class ReviewerDirectory(Protocol):
    """Staff directory."""

    def list_eligible_reviewers(self, role: str) -> Sequence[Reviewer]:
        """Active reviewers holding ``role``, in an order stable for one run."""
        ...


@runtime_checkable
class NotificationSink(Protocol):
    def publish(self, event: NotificationEvent) -> None:
        ...
