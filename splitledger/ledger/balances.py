"""
Balance Computation

Turns a group's expenses into a minimal set of pairwise debts.

DESIGN DECISION: This module is pure. It takes expenses and returns
plain dictionaries, so the same code serves the group store, the
reports and the tests without any storage involved.

Algorithm:
1. ACCUMULATE - for every payer other than the payee, add what they
   still owe (share minus paid) to a debtor -> creditor total
2. NET - where A owes B and B owes A, subtract the smaller amount from
   both and drop the side that reaches zero
3. CLEAN - round to cents and omit anything that is not positive

Result shape: {debtor_id: {creditor_id: Decimal}}. At most one
direction survives for any pair, and nobody ever owes themself.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Iterable

from splitledger.models.group import Expense
from splitledger.validation import to_money


Balances = dict[str, dict[str, Decimal]]

ZERO = Decimal("0.00")


def accumulate_owed(
    expenses: Iterable[Expense],
    include_archived: bool = True,
) -> Balances:
    """
    Raw debtor -> creditor totals across expenses, before netting.

    Args:
        expenses: Expenses of one group
        include_archived: Whether archived expenses still count
    """
    owed: dict[str, dict[str, Decimal]] = defaultdict(lambda: defaultdict(Decimal))
    for expense in expenses:
        if expense.archived and not include_archived:
            continue
        for payer in dict.fromkeys(expense.payers):
            if payer == expense.payee:
                continue
            remaining = expense.remaining_for(payer)
            if remaining > 0:
                owed[payer][expense.payee] += remaining
    return {debtor: dict(creditors) for debtor, creditors in owed.items()}


def net_balances(raw: Balances) -> Balances:
    """
    Cancel opposite debts pairwise and drop non-positive entries.

    The input is not modified.
    """
    balances = {debtor: dict(creditors) for debtor, creditors in raw.items()}

    for debtor in list(balances):
        for creditor in list(balances.get(debtor, {})):
            forward = balances.get(debtor, {}).get(creditor, ZERO)
            backward = balances.get(creditor, {}).get(debtor, ZERO)
            if forward <= 0 or backward <= 0:
                continue
            smaller = min(forward, backward)
            balances[debtor][creditor] = forward - smaller
            balances[creditor][debtor] = backward - smaller

    result: Balances = {}
    for debtor, creditors in balances.items():
        for creditor, amount in creditors.items():
            amount = to_money(amount)
            if amount > 0 and creditor != debtor:
                result.setdefault(debtor, {})[creditor] = amount
    return result


def calculate_balances(
    expenses: Iterable[Expense],
    include_archived: bool = True,
) -> Balances:
    """
    Netted balances for a set of expenses.

    Returns an empty dict when nobody owes anybody.
    """
    return net_balances(accumulate_owed(expenses, include_archived=include_archived))
