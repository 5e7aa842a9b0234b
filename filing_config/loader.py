"""
Configuration loader (``filing_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into the frozen ``EngineConfig``.
Runtime callers use ``filing_config.get_active_config()`` instead.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` with a message naming the key; no
  silent defaults for malformed values.
* An override file is merged over the shipped defaults key by key;
  ``filing_months`` and ``scheduler`` merge one level deep, ``schedules``
  replaces the whole list.
* ``compute_checksum`` is a deterministic SHA-256 of the merged data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from filing_batch.domain.schedule import CronError, validate_cron
from filing_batch.domain.types import ScheduleFrequency
from filing_kernel.domain.periods import QuarterGroup

from filing_config.schema import EngineConfig, SchedulerConfig, ScheduleDef

_NESTED_KEYS = ("filing_months", "scheduler")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: the file does not exist.
        yaml.YAMLError: the file contains invalid YAML.
        ValueError: the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def merge_config_data(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if key in _NESTED_KEYS and isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _positive_int(data: dict[str, Any], key: str, *, allow_zero: bool = False) -> int:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"{key} must be {'non-negative' if allow_zero else 'positive'}, got {value}")
    return value


def parse_filing_months(data: dict[str, Any]) -> dict[str, tuple[int, ...]]:
    """Parse the quarter-group -> filing-months table."""
    known = {g.value for g in QuarterGroup}
    table: dict[str, tuple[int, ...]] = {}
    for group, months in data.items():
        group = str(group)
        if group not in known:
            raise ValueError(f"filing_months: unknown cadence group {group!r}")
        if not isinstance(months, (list, tuple)) or not months:
            raise ValueError(f"filing_months[{group}] must be a non-empty list of months")
        for month in months:
            if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
                raise ValueError(f"filing_months[{group}]: invalid month {month!r}")
        table[group] = tuple(months)
    return table


def parse_schedule(data: dict[str, Any]) -> ScheduleDef:
    """
    Parse a ``ScheduleDef``.

    Raises:
        KeyError: ``name`` or ``task_type`` is missing.
        ValueError: unknown frequency or malformed cron expression.
    """
    name = data["name"]
    frequency = data.get("frequency", ScheduleFrequency.DAILY.value)
    try:
        ScheduleFrequency(frequency)
    except ValueError:
        raise ValueError(f"schedule {name!r}: unknown frequency {frequency!r}") from None

    cron = data.get("cron")
    if cron:
        try:
            validate_cron(cron)
        except CronError as exc:
            raise ValueError(f"schedule {name!r}: {exc}") from None

    return ScheduleDef(
        name=name,
        task_type=data["task_type"],
        frequency=frequency,
        cron=cron or None,
        parameters=dict(data.get("parameters") or {}),
        enabled=bool(data.get("enabled", True)),
    )


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """
    Parse an ``EngineConfig`` from a fully merged dict.

    Raises:
        KeyError: a required key is missing.
        ValueError: a value is malformed.
    """
    schedules = tuple(parse_schedule(s) for s in data.get("schedules") or ())
    names = [s.name for s in schedules]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValueError(f"duplicate schedule names: {duplicates}")

    scheduler_data = data.get("scheduler") or {}
    scheduler = SchedulerConfig(
        tick_interval_seconds=_positive_int(scheduler_data, "tick_interval_seconds")
        if "tick_interval_seconds" in scheduler_data
        else SchedulerConfig.tick_interval_seconds,
    )

    return EngineConfig(
        timezone=data["timezone"],
        cooling_off_months=_positive_int(data, "cooling_off_months", allow_zero=True),
        reviewer_role=data["reviewer_role"],
        accounts_due_months=_positive_int(data, "accounts_due_months"),
        due_date_change_warning_days=_positive_int(data, "due_date_change_warning_days"),
        filing_months=parse_filing_months(data["filing_months"]),
        database_url=data["database_url"],
        log_level=str(data.get("log_level", "INFO")).upper(),
        scheduler=scheduler,
        schedules=schedules,
        checksum=compute_checksum(data),
    )
