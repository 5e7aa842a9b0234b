"""Kernel services. Flush-only; the caller owns the transaction."""

from filing_kernel.services.assignment_service import AssignmentService
from filing_kernel.services.due_date_service import DueDateService
from filing_kernel.services.history_ledger import HistoryLedger
from filing_kernel.services.notifications import NotificationDispatcher
from filing_kernel.services.promotion_service import PromotionService
from filing_kernel.services.rollover_service import RolloverService
from filing_kernel.services.workflow_service import WorkflowService

__all__ = [
    "AssignmentService",
    "DueDateService",
    "HistoryLedger",
    "NotificationDispatcher",
    "PromotionService",
    "RolloverService",
    "WorkflowService",
]
