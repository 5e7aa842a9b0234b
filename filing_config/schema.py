"""
EngineConfig schema.

Frozen dataclasses parsed from YAML by ``filing_config.loader``.  Nothing
here reads files; defaults mirror ``defaults.yaml``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from filing_kernel.domain.assignment import DEFAULT_REVIEWER_ROLE
from filing_kernel.domain.clock import DEFAULT_TIMEZONE
from filing_kernel.domain.due_dates import DEFAULT_LARGE_CHANGE_DAYS
from filing_kernel.domain.periods import DEFAULT_ACCOUNTS_DUE_MONTHS, DEFAULT_FILING_MONTHS


@dataclass(frozen=True)
class ScheduleDef:
    """A recurring batch job, keyed by ``name``."""

    name: str
    task_type: str
    frequency: str  # ScheduleFrequency value
    cron: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True


@dataclass(frozen=True)
class SchedulerConfig:
    tick_interval_seconds: int = 60


@dataclass(frozen=True)
class EngineConfig:
    """Runtime settings for the workflow engine and its batch jobs."""

    timezone: str = DEFAULT_TIMEZONE
    cooling_off_months: int = 1
    reviewer_role: str = DEFAULT_REVIEWER_ROLE
    accounts_due_months: int = DEFAULT_ACCOUNTS_DUE_MONTHS
    due_date_change_warning_days: int = DEFAULT_LARGE_CHANGE_DAYS
    # Quarter-group code -> months its returns are chased in
    filing_months: dict[str, tuple[int, ...]] = field(
        default_factory=lambda: dict(DEFAULT_FILING_MONTHS)
    )
    database_url: str = "sqlite:///filing.db"
    log_level: str = "INFO"
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    schedules: tuple[ScheduleDef, ...] = ()
    checksum: str = ""

    def schedule(self, name: str) -> ScheduleDef | None:
        for schedule_def in self.schedules:
            if schedule_def.name == name:
                return schedule_def
        return None
