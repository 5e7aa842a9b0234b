"""
Filing Kernel - workflow and deadline engine for recurring filing obligations.

- Period calculation from quarterly groups and annual anchors
- Stage workflows with milestone attribution
- Append-only transition history
- Manual/automatic due-date overrides
- Rollover and calendar-gated auto-assignment services
"""

__version__ = "0.1.0"
