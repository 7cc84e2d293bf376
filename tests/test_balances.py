"""
Tests for balance netting.

Pure-function tests first, then the same scenarios through the group
store on the in-memory backend.
"""

from datetime import date
from decimal import Decimal

import pytest

from splitledger.ledger import accumulate_owed, calculate_balances, net_balances
from splitledger.models.group import Expense, Payment
from splitledger.validation import new_id

from conftest import actor


U1, U2, U3 = new_id(), new_id(), new_id()


def expense(cost, payee, payers, **extra) -> Expense:
    return Expense(
        group=new_id(),
        name=extra.pop("name", "Expense"),
        cost=Decimal(cost),
        deadline=date(2026, 2, 15),
        payee=payee,
        payers=payers,
        **extra,
    )


SCENARIO_A = expense("60.00", U1, [U2, U3])
SCENARIO_B = expense("90.00", U2, [U1, U2, U3])


class TestNetting:
    """Tests for the pure balance functions."""

    def test_scenario_a(self):
        """Two payers each owe the payee half."""
        assert calculate_balances([SCENARIO_A]) == {
            U2: {U1: Decimal("30.00")},
            U3: {U1: Decimal("30.00")},
        }

    def test_scenario_b(self):
        """Opposite debts between U1 and U2 cancel out."""
        balances = calculate_balances([SCENARIO_A, SCENARIO_B])
        assert balances == {U3: {U1: Decimal("30.00"), U2: Decimal("30.00")}}

    def test_payee_never_owes_self(self):
        """A payee listed as payer carries a share but owes nobody."""
        balances = calculate_balances([SCENARIO_B])
        assert U2 not in balances
        for debtor, creditors in balances.items():
            assert debtor not in creditors

    def test_partial_netting(self):
        """The larger debt survives, reduced by the smaller."""
        raw = {U1: {U2: Decimal("50")}, U2: {U1: Decimal("20")}}
        assert net_balances(raw) == {U1: {U2: Decimal("30.00")}}

    def test_netting_does_not_mutate_input(self):
        """The raw totals are left alone."""
        raw = {U1: {U2: Decimal("50")}, U2: {U1: Decimal("20")}}
        net_balances(raw)
        assert raw[U2][U1] == Decimal("20")

    def test_at_most_one_direction(self):
        """No pair ever owes in both directions."""
        expenses = [
            expense("30.00", U1, [U2]),
            expense("45.00", U2, [U1, U3]),
            expense("12.00", U3, [U1, U2]),
        ]
        balances = calculate_balances(expenses)
        for debtor, creditors in balances.items():
            for creditor, amount in creditors.items():
                assert amount > 0
                assert debtor not in balances.get(creditor, {})

    def test_payments_reduce_debt(self):
        """Paid amounts are subtracted before netting."""
        paid = expense("60.00", U1, [U2, U3], payments=[Payment(payer=U2, paid=Decimal("30"))])
        assert calculate_balances([paid]) == {U3: {U1: Decimal("30.00")}}

    def test_settled_group_is_empty(self):
        """Everybody paid means nobody owes."""
        paid = expense(
            "20.00", U1, [U2],
            payments=[Payment(payer=U2, paid=Decimal("20"))],
        )
        assert calculate_balances([paid]) == {}

    def test_no_expenses(self):
        """No expenses, no balances."""
        assert calculate_balances([]) == {}

    def test_rounding(self):
        """Uneven splits are rounded to cents per payer."""
        balances = calculate_balances([expense("100.00", U1, [U1, U2, U3])])
        assert balances == {U2: {U1: Decimal("33.33")}, U3: {U1: Decimal("33.33")}}


class TestArchivePolicy:
    """Tests for whether archived expenses count."""

    def test_archived_counts_by_default(self):
        """Archived expenses still count unless excluded."""
        archived = expense("60.00", U1, [U2, U3], archived=True)
        assert calculate_balances([archived]) == calculate_balances([SCENARIO_A])

    def test_archived_excluded_when_asked(self):
        """include_archived=False skips archived expenses."""
        archived = expense("60.00", U1, [U2, U3], archived=True)
        assert calculate_balances([archived], include_archived=False) == {}

    def test_accumulate_is_raw(self):
        """accumulate_owed keeps both directions."""
        raw = accumulate_owed([SCENARIO_A, SCENARIO_B])
        assert raw[U1][U2] == Decimal("30.00")
        assert raw[U2][U1] == Decimal("30.00")


class TestGroupStoreBalances:
    """Tests for balances computed through the group store."""

    async def test_scenarios_through_store(self, app, people, group):
        """Scenario A then B on a live group."""
        ada, bob, cy = people
        await app.ledger.create_expense(
            group.id, "Groceries", 60, "02/15/2026", ada.id, [bob.id, cy.id],
            performed_by=actor(ada),
        )
        assert await app.groups.calculate_group_balances(group.id) == {
            bob.id: {ada.id: Decimal("30.00")},
            cy.id: {ada.id: Decimal("30.00")},
        }

        await app.ledger.create_expense(
            group.id, "Utilities", 90, "02/20/2026", bob.id, [ada.id, bob.id, cy.id],
            performed_by=actor(bob),
        )
        assert await app.groups.calculate_group_balances(group.id) == {
            cy.id: {ada.id: Decimal("30.00"), bob.id: Decimal("30.00")},
        }

    async def test_archive_override(self, app, people, group):
        """The per-call override excludes archived expenses."""
        ada, bob, cy = people
        created = await app.ledger.create_expense(
            group.id, "Groceries", 60, "02/15/2026", ada.id, [bob.id, cy.id],
        )
        await app.ledger.archive_expense(group.id, created.id)
        assert await app.groups.calculate_group_balances(group.id) != {}
        assert await app.groups.calculate_group_balances(group.id, include_archived=False) == {}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
