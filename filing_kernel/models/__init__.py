"""ORM models. Importing this package registers all tables and the history immutability listeners."""

from filing_kernel.models.due_date import DueDateStateModel
from filing_kernel.models.history import ObligationHistoryModel
from filing_kernel.models.obligation import ObligationMilestoneModel, ObligationModel

from filing_kernel.db.immutability import register_immutability_listeners

register_immutability_listeners()

__all__ = [
    "DueDateStateModel",
    "ObligationHistoryModel",
    "ObligationMilestoneModel",
    "ObligationModel",
]
