"""Expense ledger: balance netting and expense mutations."""

from splitledger.ledger.balances import (
    Balances,
    accumulate_owed,
    calculate_balances,
    net_balances,
)
from splitledger.ledger.expenses import DeletedExpense, ExpenseLedger, build_payer_shares

__all__ = [
    "Balances",
    "DeletedExpense",
    "ExpenseLedger",
    "accumulate_owed",
    "build_payer_shares",
    "calculate_balances",
    "net_balances",
]
