"""Read-only query selectors."""

from filing_kernel.selectors.obligation_selector import ObligationSelector, obligation_to_dto

__all__ = ["ObligationSelector", "obligation_to_dto"]
