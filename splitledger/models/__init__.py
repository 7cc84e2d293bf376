"""
Data Models Package

This package contains all Pydantic models used in SplitLedger.
All data flowing through the system must conform to these schemas.
"""

from splitledger.models.user import User, UserRole
from splitledger.models.group import (
    DistributionType,
    Expense,
    FileInfo,
    Group,
    PayerShare,
    Payment,
    Post,
)
from splitledger.models.change_log import (
    Authoritative,
    BestEffort,
    BulkUpdateResult,
    ChangeLogAction,
    ChangeLogDetailsBuilder,
    ChangeLogEntry,
    ChangeLogFilter,
    ChangeLogType,
    GroupHistory,
    GroupStatus,
    HistoricalGroup,
    PerformedBy,
    ReconstructedExpense,
)
from splitledger.models.reports import (
    ChartSeries,
    ExpenseGraphData,
    ExpenseSortOrder,
    GroupLogSummary,
    GroupSummary,
    HistoryExpenseView,
    PayerShareView,
    PaymentStats,
    UserExpenseView,
    coerce_sort_order,
    sort_expenses,
)

__all__ = [
    # User models
    "User",
    "UserRole",
    # Group models
    "DistributionType",
    "Expense",
    "FileInfo",
    "Group",
    "PayerShare",
    "Payment",
    "Post",
    # Change-log models
    "Authoritative",
    "BestEffort",
    "BulkUpdateResult",
    "ChangeLogAction",
    "ChangeLogDetailsBuilder",
    "ChangeLogEntry",
    "ChangeLogFilter",
    "ChangeLogType",
    "GroupHistory",
    "GroupStatus",
    "HistoricalGroup",
    "PerformedBy",
    "ReconstructedExpense",
    # Report models
    "ChartSeries",
    "ExpenseGraphData",
    "ExpenseSortOrder",
    "GroupLogSummary",
    "GroupSummary",
    "HistoryExpenseView",
    "PayerShareView",
    "PaymentStats",
    "UserExpenseView",
    "coerce_sort_order",
    "sort_expenses",
]
