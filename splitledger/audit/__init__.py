"""Audit package: structured logging, the change-log engine and history reconstruction."""

from splitledger.audit.logger import configure_logging
from splitledger.audit.change_log import ChangeLogEngine, extract_unique_groups
from splitledger.audit.reconstruction import (
    GroupHistoryReconstructor,
    format_history_expenses,
)

__all__ = [
    "ChangeLogEngine",
    "GroupHistoryReconstructor",
    "configure_logging",
    "extract_unique_groups",
    "format_history_expenses",
]
