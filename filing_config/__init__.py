"""
filing_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Other components receive an ``EngineConfig``
    (or values taken from it) and never read YAML themselves.

Architecture position:
    Configuration sits above ``filing_kernel`` and beside
    ``filing_batch``.  The kernel never imports from ``filing_config``.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``FILING_CONFIG_TRACE`` log entry carrying the source path and the
    SHA-256 checksum of the merged configuration.
"""

from __future__ import annotations

import logging
from pathlib import Path

from filing_config.loader import load_yaml_file, merge_config_data, parse_engine_config
from filing_config.schema import EngineConfig, SchedulerConfig, ScheduleDef

_logger = logging.getLogger("filing_kernel.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> EngineConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: Optional YAML file merged over the shipped defaults.

    Raises:
        FileNotFoundError: ``path`` does not exist.
        ValueError: the merged configuration is invalid.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    source = str(DEFAULTS_PATH)
    if path is not None:
        data = merge_config_data(data, load_yaml_file(Path(path)))
        source = str(path)

    config = parse_engine_config(data)

    _logger.info(
        "FILING_CONFIG_TRACE",
        extra={
            "trace_type": "FILING_CONFIG_TRACE",
            "source": source,
            "checksum": config.checksum,
            "timezone": config.timezone,
            "schedule_count": len(config.schedules),
        },
    )
    return config


__all__ = ["EngineConfig", "ScheduleDef", "SchedulerConfig", "get_active_config"]
