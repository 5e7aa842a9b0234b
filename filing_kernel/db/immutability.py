"""
ORM-level immutability enforcement for the history ledger.

History entries are append-only from creation: every UPDATE or DELETE of
an ``ObligationHistoryModel`` row is rejected with
ImmutabilityViolationError before any SQL is sent, and the surrounding
transaction is aborted.

Listeners are registered once per process.  Tests that need to violate
immutability on purpose may unregister and re-register them:

    from filing_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
    # ... forbidden operation ...
    register_immutability_listeners()
"""

from sqlalchemy import event

from filing_kernel.exceptions import ImmutabilityViolationError
from filing_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _reject(operation: str, target) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "ObligationHistory",
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type="ObligationHistory",
        entity_id=str(target.id),
        reason=f"history entries are append-only ({operation} blocked)",
    )


def _check_history_update(mapper, connection, target):
    _reject("UPDATE", target)


def _check_history_delete(mapper, connection, target):
    _reject("DELETE", target)


def register_immutability_listeners() -> None:
    """Register history-ledger immutability listeners (idempotent)."""
    from filing_kernel.models.history import ObligationHistoryModel

    for name, fn in (
        ("before_update", _check_history_update),
        ("before_delete", _check_history_delete),
    ):
        if not event.contains(ObligationHistoryModel, name, fn):
            event.listen(ObligationHistoryModel, name, fn)


def unregister_immutability_listeners() -> None:
    """Remove the listeners. Only for tests that verify detection."""
    from filing_kernel.models.history import ObligationHistoryModel

    for name, fn in (
        ("before_update", _check_history_update),
        ("before_delete", _check_history_delete),
    ):
        if event.contains(ObligationHistoryModel, name, fn):
            event.remove(ObligationHistoryModel, name, fn)
