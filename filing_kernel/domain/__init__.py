"""
Pure domain layer.

Contains the period calculator, stage catalogs, transition planning,
due-date rules and frozen DTOs, with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (beyond the injectable Clock interface)
- I/O
"""

from filing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from filing_kernel.domain.dtos import (
    SYSTEM_ACTOR,
    Actor,
    ConfirmationRequired,
    HistoryEntryInfo,
    Milestone,
    NotificationEvent,
    ObligationInfo,
    Reviewer,
    TransitionResult,
)
from filing_kernel.domain.due_dates import DueDateDecision, DueDateSource, DueDateState
from filing_kernel.domain.periods import (
    CadenceGroup,
    ObligationPeriod,
    QuarterGroup,
    compute_period,
    next_period,
)
from filing_kernel.domain.stages import (
    MilestoneField,
    ObligationKind,
    Stage,
    StageCatalog,
    catalog_for,
)

__all__ = [
    "Actor",
    "CadenceGroup",
    "Clock",
    "ConfirmationRequired",
    "DeterministicClock",
    "DueDateDecision",
    "DueDateSource",
    "DueDateState",
    "HistoryEntryInfo",
    "Milestone",
    "MilestoneField",
    "NotificationEvent",
    "ObligationInfo",
    "ObligationKind",
    "ObligationPeriod",
    "QuarterGroup",
    "Reviewer",
    "SYSTEM_ACTOR",
    "Stage",
    "StageCatalog",
    "SystemClock",
    "TransitionResult",
    "catalog_for",
    "compute_period",
    "next_period",
]
