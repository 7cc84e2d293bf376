"""
SplitLedger - Source Package

Shared-expense tracking core: groups, expenses with a payee and payers,
partial payments, netted pairwise balances, and an append-only change log
that can rebuild the history of deleted groups and expenses.

DESIGN PRINCIPLES:
1. Validate at the boundary, before anything is written
2. Fail early, fail visibly
3. No silent corrections (overpayments are errors, not caps)
4. Every mutation is auditable through the change log
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "SplitLedger Team"
