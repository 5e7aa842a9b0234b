"""
filing_batch -- batch processing and job scheduling for the filing engine.

Provides a batch execution engine with per-item SAVEPOINT isolation,
progress tracking and an in-process cron-like scheduler, and wraps the
kernel's periodic operations (rollover, promotion of awaiting instances,
round-robin auto-assignment) as registered tasks.

Architecture:
    filing_batch/ is a top-level package.  Nothing in filing_kernel
    imports from filing_batch, except ``db.engine`` loading the batch
    tables before ``create_all``.
"""
