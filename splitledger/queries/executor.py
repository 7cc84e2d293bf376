"""
Report Query Executor

DESIGN DECISION: Reports are READ-ONLY derivations.
Every figure returned here is computed from the groups and users that
storage currently holds. Nothing is cached and nothing is written back,
so two calls with the same store state return the same answer.

A user only ever sees expenses of groups they are currently a member of.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional, Union

from splitledger.models.group import Expense, Group
from splitledger.models.reports import (
    ChartSeries,
    ExpenseGraphData,
    ExpenseSortOrder,
    GroupSummary,
    PaymentStats,
    UserExpenseView,
    sort_expenses,
)
from splitledger.services.storage import GroupStorageInterface, UserStorageInterface
from splitledger.validation import to_money, validate_id


UNKNOWN_NAME = "Unknown"

CHART_COLORS = [
    "#FF6384", "#36A2EB", "#FFCE56", "#4BC0C0", "#9966FF",
    "#FF9F40", "#FF6384", "#C9CBCF", "#4BC0C0", "#FF9F40",
]


def chart_colors(count: int) -> list[str]:
    """Palette colours for `count` slices, cycling when there are more slices than colours."""
    return [CHART_COLORS[i % len(CHART_COLORS)] for i in range(count)]


def _month_label(month_key: str) -> str:
    year, month = month_key.split("-")
    return date(int(year), int(month), 1).strftime("%b %Y")


class ReportQueryExecutor:
    """
    Executes the reporting views against group and user storage.

    GUARANTEES:
    - Only returns real data from storage
    - Never mutates groups, expenses or users
    - Empty results (not errors) for users without groups
    """

    def __init__(
        self,
        group_storage: GroupStorageInterface,
        user_storage: UserStorageInterface,
        graph_top: int = 10,
    ):
        self._groups = group_storage
        self._users = user_storage
        self._graph_top = graph_top

    async def _user_groups(self, user_id: str) -> list[Group]:
        return await self._groups.list_groups(member_id=user_id)

    async def _name_map(self) -> dict[str, str]:
        return {u.id: u.display_name for u in await self._users.list_users()}

    # -------------------------------------------------------------------------
    # Listing and search
    # -------------------------------------------------------------------------

    async def get_all_expenses_for_user(self, user_id: str) -> list[UserExpenseView]:
        """
        Every expense, across the user's groups, in which the user is a payer.

        Archived expenses are included and flagged.
        """
        user_id = validate_id(user_id, "User")
        groups = await self._user_groups(user_id)
        if not groups:
            return []

        names = await self._name_map()
        views = []
        for group in groups:
            summary = GroupSummary(
                id=group.id,
                group_name=group.name,
                group_description=group.description,
            )
            for expense in group.expense_list():
                if user_id not in expense.payers:
                    continue
                views.append(self._expense_view(expense, user_id, summary, names))
        return views

    def _expense_view(
        self,
        expense: Expense,
        user_id: str,
        summary: GroupSummary,
        names: dict[str, str],
    ) -> UserExpenseView:
        owed = expense.share_for(user_id)
        paid = expense.paid_by(user_id)
        return UserExpenseView(
            id=expense.id,
            name=expense.name,
            cost=to_money(expense.cost),
            deadline=expense.deadline,
            payee=expense.payee,
            payee_name=names.get(expense.payee, UNKNOWN_NAME),
            payers=list(expense.payers),
            payer_names=[names.get(p, UNKNOWN_NAME) for p in expense.payers],
            distribution_type=expense.distribution_type,
            amount_per_payer=expense.amount_per_payer,
            owed=owed,
            paid=paid,
            remaining=max(Decimal("0.00"), owed - paid),
            archived=expense.archived,
            group=summary,
        )

    async def search_expenses(
        self,
        user_id: str,
        search_term: Optional[str] = "",
        sort: Optional[Union[ExpenseSortOrder, str]] = None,
        group_id: Optional[str] = None,
    ) -> list[UserExpenseView]:
        """
        Filter and sort the user's expenses.

        Args:
            user_id: The viewing user
            search_term: Case-insensitive substring of the expense name
            sort: closestDue, farthestDue, lowestAmount or highestAmount;
                anything else leaves the order unchanged
            group_id: Restrict to one group

        Returns:
            Matching expenses; amount orders compare amount_per_payer
        """
        user_id = validate_id(user_id, "User")
        expenses = await self.get_all_expenses_for_user(user_id)

        if search_term and search_term.strip():
            needle = search_term.strip().lower()
            expenses = [e for e in expenses if needle in e.name.lower()]

        if group_id and group_id.strip():
            group_id = validate_id(group_id, "Group")
            expenses = [e for e in expenses if e.group.id == group_id]

        return sort_expenses(
            expenses,
            sort,
            deadline_of=lambda e: e.deadline,
            amount_of=lambda e: e.amount_per_payer,
        )

    # -------------------------------------------------------------------------
    # Aggregates
    # -------------------------------------------------------------------------

    async def get_expense_graph_data(self, user_id: str) -> ExpenseGraphData:
        """
        Chart data over the unarchived expenses of every group the user is in.

        by_name holds the most expensive names (cost summed per name);
        by_date sums cost per deadline month, oldest month first.
        """
        user_id = validate_id(user_id, "User")
        groups = await self._user_groups(user_id)
        if not groups:
            return ExpenseGraphData()

        by_name: dict[str, Decimal] = defaultdict(Decimal)
        by_month: dict[str, Decimal] = defaultdict(Decimal)
        total_expenses = 0
        total_cost = Decimal("0")

        for group in groups:
            for expense in group.expense_list():
                if expense.archived:
                    continue
                total_expenses += 1
                total_cost += expense.cost
                by_name[expense.name] += expense.cost
                by_month[expense.deadline.strftime("%Y-%m")] += expense.cost

        # sorted() is stable, so equal totals keep first-seen order
        top = sorted(by_name.items(), key=lambda item: item[1], reverse=True)[: self._graph_top]
        months = sorted(by_month.items())

        return ExpenseGraphData(
            by_name=ChartSeries(
                labels=[name for name, _ in top],
                data=[to_money(cost) for _, cost in top],
                colors=chart_colors(len(top)),
            ),
            by_date=ChartSeries(
                labels=[_month_label(month) for month, _ in months],
                data=[to_money(cost) for _, cost in months],
            ),
            total_expenses=total_expenses,
            total_cost=to_money(total_cost),
        )

    async def get_user_payment_stats(self, user_id: str) -> PaymentStats:
        """
        Money the user paid back versus money paid back to the user.

        total_paid counts the user's own non-zero payments on any expense;
        total_earned counts other payers' non-zero payments on expenses
        the user fronted.
        """
        user_id = validate_id(user_id, "User")
        total_paid = Decimal("0")
        total_earned = Decimal("0")
        payment_count = 0
        earning_count = 0

        for group in await self._user_groups(user_id):
            for expense in group.expense_list():
                own = expense.payment_for(user_id)
                if own is not None and own.paid > 0:
                    total_paid += own.paid
                    payment_count += 1

                if expense.payee != user_id:
                    continue
                for payment in expense.payments:
                    if payment.payer != user_id and payment.paid > 0:
                        total_earned += payment.paid
                        earning_count += 1

        return PaymentStats(
            total_paid=to_money(total_paid),
            total_earned=to_money(total_earned),
            payment_count=payment_count,
            earning_count=earning_count,
            net_balance=to_money(total_earned - total_paid),
        )
