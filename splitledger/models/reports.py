"""
Report Models

Read-only shapes returned by the reporting views and history listings.
They are pure derivations of ledger and change-log state; nothing here is
ever persisted.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional, TypeVar, Union

from pydantic import BaseModel, Field

from splitledger.models.change_log import GroupStatus
from splitledger.models.group import DistributionType


T = TypeVar("T")


class ExpenseSortOrder(str, Enum):
    """Sort orders understood by expense search and history listings."""
    CLOSEST_DUE = "closestDue"
    FARTHEST_DUE = "farthestDue"
    LOWEST_AMOUNT = "lowestAmount"
    HIGHEST_AMOUNT = "highestAmount"


class GroupSummary(BaseModel):
    id: str
    group_name: str
    group_description: str


class UserExpenseView(BaseModel):
    """One expense as seen by one of its payers."""

    id: str
    name: str
    cost: Decimal
    deadline: date
    payee: str
    payee_name: str
    payers: list[str]
    payer_names: list[str]
    distribution_type: DistributionType
    amount_per_payer: Decimal = Field(
        ...,
        description="Even split of the cost, shown regardless of distribution type"
    )
    owed: Decimal = Field(..., description="The viewing user's share")
    paid: Decimal
    remaining: Decimal
    archived: bool
    group: GroupSummary


class ChartSeries(BaseModel):
    labels: list[str] = Field(default_factory=list)
    data: list[Decimal] = Field(default_factory=list)
    colors: list[str] = Field(default_factory=list)


class ExpenseGraphData(BaseModel):
    """Chart data for a user's expenses across all of their groups."""

    by_name: ChartSeries = Field(default_factory=ChartSeries)
    by_date: ChartSeries = Field(default_factory=ChartSeries)
    total_expenses: int = 0
    total_cost: Decimal = Decimal("0.00")


class PaymentStats(BaseModel):
    """Money a user paid back versus money paid back to them."""

    total_paid: Decimal = Decimal("0.00")
    total_earned: Decimal = Decimal("0.00")
    payment_count: int = 0
    earning_count: int = 0
    net_balance: Decimal = Decimal("0.00")


class GroupLogSummary(BaseModel):
    """One row of the "groups I have history for" listing."""

    id: str
    group_name: str
    group_status: GroupStatus
    last_activity: datetime


class PayerShareView(BaseModel):
    id: str
    name: str
    owed: Decimal = Field(..., description="Remaining owed, never negative")


class HistoryExpenseView(BaseModel):
    """A live or reconstructed expense formatted for a history listing."""

    id: str
    name: str
    cost: Decimal
    deadline: str
    payee: str
    payee_name: str
    payers: list[str]
    payer_names: str
    amount_per_payer: Decimal
    num_payers: int
    payer_shares: list[PayerShareView]
    is_deleted: bool = False


def coerce_sort_order(value: Optional[Union[ExpenseSortOrder, str]]) -> Optional[ExpenseSortOrder]:
    """Unknown sort names mean "no sorting", not an error."""
    if value is None or isinstance(value, ExpenseSortOrder):
        return value
    try:
        return ExpenseSortOrder(value)
    except ValueError:
        return None


def sort_expenses(
    items: list[T],
    order: Optional[Union[ExpenseSortOrder, str]],
    deadline_of: Callable[[T], Optional[date]],
    amount_of: Callable[[T], Decimal],
) -> list[T]:
    """
    Sort expense-like items by due date or by amount.

    Items without a usable deadline sort after the dated ones for both
    due-date orders.
    """
    order = coerce_sort_order(order)
    if order is None:
        return list(items)
    if order in (ExpenseSortOrder.LOWEST_AMOUNT, ExpenseSortOrder.HIGHEST_AMOUNT):
        return sorted(
            items,
            key=amount_of,
            reverse=order == ExpenseSortOrder.HIGHEST_AMOUNT,
        )

    dated = [item for item in items if deadline_of(item) is not None]
    undated = [item for item in items if deadline_of(item) is None]
    dated.sort(key=deadline_of, reverse=order == ExpenseSortOrder.FARTHEST_DUE)
    return dated + undated
