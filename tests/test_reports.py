"""
Tests for the reporting views.
"""

from decimal import Decimal

import pytest

from splitledger.queries import CHART_COLORS, chart_colors
from splitledger.validation import new_id


async def seed(app, group, people):
    """Three expenses across two months; the cheapest is archived."""
    ada, bob, cy = people
    rent = await app.ledger.create_expense(
        group.id, "Rent", 900, "03/01/2026", ada.id, [ada.id, bob.id, cy.id],
    )
    food = await app.ledger.create_expense(
        group.id, "Groceries", 60, "02/15/2026", bob.id, [ada.id, cy.id],
    )
    snacks = await app.ledger.create_expense(
        group.id, "Snacks", 12, "02/20/2026", cy.id, [ada.id, bob.id],
    )
    await app.ledger.archive_expense(group.id, snacks.id)
    return rent, food, snacks


class TestExpenseListing:
    """Tests for get_all_expenses_for_user and search_expenses."""

    async def test_only_expenses_user_pays(self, app, people, group):
        """A user sees expenses where they are a payer."""
        ada, bob, cy = people
        rent, food, snacks = await seed(app, group, people)
        views = await app.reports.get_all_expenses_for_user(bob.id)
        assert [v.id for v in views] == [rent.id, snacks.id]

        rent_view = views[0]
        assert rent_view.amount_per_payer == Decimal("300.00")
        assert rent_view.payee_name == "Ada Lovelace"
        assert rent_view.payer_names == ["Ada Lovelace", "Bob Builder", "Cy Young"]
        assert rent_view.group.group_name == "Roommates"
        assert rent_view.owed == Decimal("300.00")
        assert rent_view.remaining == Decimal("300.00")
        assert views[1].archived is True

    async def test_no_groups(self, app, people):
        """Users without groups have no expenses."""
        _, bob, _ = people
        assert await app.reports.get_all_expenses_for_user(bob.id) == []

    async def test_paid_and_remaining(self, app, people, group):
        """Views carry the user's paid and remaining amounts."""
        ada, bob, cy = people
        rent, _, _ = await seed(app, group, people)
        await app.ledger.add_payment(group.id, rent.id, cy.id, 100)
        [view] = [v for v in await app.reports.get_all_expenses_for_user(cy.id) if v.id == rent.id]
        assert view.paid == Decimal("100.00")
        assert view.remaining == Decimal("200.00")

    async def test_search_by_name(self, app, people, group):
        """Search is a case-insensitive substring match."""
        ada, _, _ = people
        await seed(app, group, people)
        found = await app.reports.search_expenses(ada.id, "GROC")
        assert [v.name for v in found] == ["Groceries"]

    async def test_sort_orders(self, app, people, group):
        """Due-date and amount orders."""
        ada, _, _ = people
        await seed(app, group, people)
        closest = await app.reports.search_expenses(ada.id, sort="closestDue")
        assert [v.name for v in closest] == ["Groceries", "Snacks", "Rent"]
        farthest = await app.reports.search_expenses(ada.id, sort="farthestDue")
        assert [v.name for v in farthest] == ["Rent", "Snacks", "Groceries"]
        lowest = await app.reports.search_expenses(ada.id, sort="lowestAmount")
        assert [v.amount_per_payer for v in lowest] == [
            Decimal("6.00"), Decimal("30.00"), Decimal("300.00")
        ]
        highest = await app.reports.search_expenses(ada.id, sort="highestAmount")
        assert highest[0].name == "Rent"

    async def test_unknown_sort(self, app, people, group):
        """Unknown sorts keep listing order."""
        ada, _, _ = people
        await seed(app, group, people)
        found = await app.reports.search_expenses(ada.id, sort="alphabetical")
        assert [v.name for v in found] == ["Rent", "Groceries", "Snacks"]

    async def test_group_filter(self, app, people, group):
        """The group filter narrows to one group."""
        ada, bob, _ = people
        await seed(app, group, people)
        other = await app.create_group("Other group", "Second", creator_id=ada.id)
        await app.add_member(other.id, bob.user_id)
        await app.ledger.create_expense(other.id, "Taxi", 20, "02/01/2026", bob.id, [ada.id])

        everything = await app.reports.search_expenses(ada.id)
        assert len(everything) == 4
        only_other = await app.reports.search_expenses(ada.id, group_id=other.id)
        assert [v.name for v in only_other] == ["Taxi"]


class TestGraphData:
    """Tests for get_expense_graph_data."""

    async def test_graph_skips_archived(self, app, people, group):
        """Archived expenses are left out of every series."""
        ada, _, _ = people
        await seed(app, group, people)
        graph = await app.reports.get_expense_graph_data(ada.id)

        assert graph.total_expenses == 2
        assert graph.total_cost == Decimal("960.00")
        assert graph.by_name.labels == ["Rent", "Groceries"]
        assert graph.by_name.data == [Decimal("900.00"), Decimal("60.00")]
        assert graph.by_name.colors == CHART_COLORS[:2]
        assert graph.by_date.labels == ["Feb 2026", "Mar 2026"]
        assert graph.by_date.data == [Decimal("60.00"), Decimal("900.00")]

    async def test_same_name_summed(self, app, people, group):
        """Expenses sharing a name are summed in by_name."""
        ada, bob, _ = people
        for cost in (10, 15):
            await app.ledger.create_expense(group.id, "Coffee", cost, "01/05/2026", ada.id, [bob.id])
        graph = await app.reports.get_expense_graph_data(ada.id)
        assert graph.by_name.labels == ["Coffee"]
        assert graph.by_name.data == [Decimal("25.00")]

    async def test_top_ten(self, app, people, group):
        """by_name keeps only the ten most expensive names."""
        ada, bob, _ = people
        for i in range(12):
            await app.ledger.create_expense(
                group.id, f"Item {i:02d}", 10 + i, "01/05/2026", ada.id, [bob.id],
            )
        graph = await app.reports.get_expense_graph_data(ada.id)
        assert len(graph.by_name.labels) == 10
        assert graph.by_name.labels[0] == "Item 11"
        assert graph.total_expenses == 12

    async def test_no_groups(self, app, people):
        """Users without groups get empty series and zero totals."""
        ada, _, _ = people
        graph = await app.reports.get_expense_graph_data(ada.id)
        assert graph.by_name.labels == []
        assert graph.by_date.labels == []
        assert graph.total_expenses == 0
        assert graph.total_cost == Decimal("0.00")

    def test_palette_cycles(self):
        """Colours repeat after the palette runs out."""
        colors = chart_colors(12)
        assert colors[10] == CHART_COLORS[0]
        assert colors[:10] == CHART_COLORS


class TestPaymentStats:
    """Tests for get_user_payment_stats."""

    async def test_paid_and_earned(self, app, people, group):
        """Paid counts own payments; earned counts others paying the user back."""
        ada, bob, cy = people
        rent, food, _ = await seed(app, group, people)
        await app.ledger.add_payment(group.id, rent.id, bob.id, 100)
        await app.ledger.add_payment(group.id, rent.id, cy.id, 50.25)
        await app.ledger.add_payment(group.id, rent.id, ada.id, 300)
        await app.ledger.add_payment(group.id, food.id, ada.id, 30)

        stats = await app.reports.get_user_payment_stats(ada.id)
        assert stats.total_paid == Decimal("330.00")
        assert stats.payment_count == 2
        assert stats.total_earned == Decimal("150.25")
        assert stats.earning_count == 2
        assert stats.net_balance == Decimal("-179.75")

    async def test_zero_payments_ignored(self, app, people, group):
        """Zero payment records do not count."""
        ada, _, _ = people
        await seed(app, group, people)
        stats = await app.reports.get_user_payment_stats(ada.id)
        assert (stats.payment_count, stats.earning_count) == (0, 0)
        assert stats.net_balance == Decimal("0.00")

    async def test_invalid_user(self, app):
        """User ids are validated."""
        with pytest.raises(ValueError, match="User ID is not a valid ID."):
            await app.reports.get_user_payment_stats("bad")

    async def test_no_groups(self, app):
        """Unknown or groupless users get zeros."""
        stats = await app.reports.get_user_payment_stats(new_id())
        assert stats.total_paid == Decimal("0.00")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
