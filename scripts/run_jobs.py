#!/usr/bin/env python3
"""
Operator CLI for the filing engine's batch jobs.

Usage:
  python3 scripts/run_jobs.py init-db [--config FILE]
  python3 scripts/run_jobs.py list [--config FILE]
  python3 scripts/run_jobs.py run TASK_TYPE [--config FILE] [--reviewers FILE]
  python3 scripts/run_jobs.py scheduler [--config FILE] [--reviewers FILE]

TASK_TYPE is one of obligations.rollover, obligations.promote_awaiting or
obligations.auto_assign.  The reviewers file is a YAML list of
{id, name, role, active} mappings used by auto-assignment; without it the
auto-assign task fails with REVIEWER_POOL_UNAVAILABLE.

The scheduler syncs the configured schedules, then polls until SIGINT or
SIGTERM; the job in flight stops before its next item.
"""

import argparse
import signal
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


class YamlReviewerDirectory:
    """ReviewerDirectory backed by a YAML list, re-read on every call."""

    def __init__(self, path: Path):
        self._path = path

    def list_eligible_reviewers(self, role):
        import yaml

        from filing_kernel.domain.dtos import Reviewer

        with open(self._path) as f:
            rows = yaml.safe_load(f) or []
        return [
            Reviewer(
                reviewer_id=str(row["id"]),
                name=row["name"],
                role=row.get("role", role),
                is_active=bool(row.get("active", True)),
            )
            for row in rows
            if row.get("role", role) == role
        ]


def _parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run filing engine batch jobs")
    p.add_argument("--config", type=Path, default=None, help="YAML merged over the shipped defaults")
    p.add_argument("--db-url", default=None, help="Override database_url from config")
    p.add_argument("--reviewers", type=Path, default=None, help="YAML reviewer list for auto-assignment")

    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create all tables")
    sub.add_parser("list", help="List registered tasks and configured schedules")
    run = sub.add_parser("run", help="Run one task now")
    run.add_argument("task_type")
    run.add_argument("--job-name", default=None)
    sub.add_parser("scheduler", help="Sync schedules and poll until interrupted")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)

    from filing_config import get_active_config
    from filing_kernel.db.engine import (
        create_tables,
        get_session_factory,
        init_engine_from_url,
        session_scope,
    )
    from filing_kernel.exceptions import FilingKernelError
    from filing_kernel.logging_config import configure_logging

    config = get_active_config(args.config)
    configure_logging(level=config.log_level)
    init_engine_from_url(args.db_url or config.database_url)

    if args.command == "init-db":
        create_tables()
        print("  tables created")
        return 0

    from filing_batch.orchestrator import BatchOrchestrator
    from filing_batch.domain.types import BatchJobStatus

    directory = YamlReviewerDirectory(args.reviewers) if args.reviewers else None

    if args.command == "list":
        with session_scope() as session:
            orchestrator = BatchOrchestrator.from_config(session, config, directory=directory)
            for task_type in orchestrator.task_registry.list_tasks():
                print(f"  task      {task_type}")
        for schedule_def in config.schedules:
            state = "enabled" if schedule_def.enabled else "disabled"
            print(
                f"  schedule  {schedule_def.name:<28} {schedule_def.task_type:<32} "
                f"{schedule_def.cron or schedule_def.frequency} ({state})"
            )
        return 0

    if args.command == "run":
        try:
            with session_scope() as session:
                orchestrator = BatchOrchestrator.from_config(session, config, directory=directory)
                result = orchestrator.create_executor().run_now(
                    job_name=args.job_name or f"{args.task_type}-manual",
                    task_type=args.task_type,
                    actor_id=orchestrator.actor_id,
                )
        except FilingKernelError as exc:
            print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
            return 1
        print(
            f"  {result.status.value}: {result.total_items} item(s), "
            f"{result.succeeded} succeeded, {result.skipped} skipped, {result.failed} failed"
        )
        if result.error_summary:
            print(f"  {result.error_summary}")
        return 0 if result.status in (BatchJobStatus.COMPLETED, BatchJobStatus.PARTIALLY_COMPLETED) else 1

    # scheduler
    session_factory = get_session_factory()
    with session_scope() as session:
        orchestrator = BatchOrchestrator.from_config(session, config, directory=directory)
    scheduler = orchestrator.create_scheduler(
        session_factory, tick_interval_seconds=config.scheduler.tick_interval_seconds
    )
    scheduler.sync_schedules(config.schedules)

    def _stop(signum, frame):
        print(f"  signal {signum}: stopping after the current item")
        scheduler.stop()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    scheduler.start()
    scheduler.wait()
    return 0


if __name__ == "__main__":
    sys.exit(main())
