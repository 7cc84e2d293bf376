"""
Tests for the currency converter and its rate table.
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from splitledger.errors import InvalidArgument
from splitledger.services.currency import CurrencyConverter, ExchangeRateTable
from splitledger.services.storage import InMemoryGroupStorage, InMemoryUserStorage
from splitledger.stores import GroupStore


class TestConvert:
    """Tests for convert()."""

    def test_usd_to_eur(self):
        assert CurrencyConverter().convert(100, "USD", "EUR") == Decimal("92.00")

    def test_through_base(self):
        """Non-base pairs go through the base currency."""
        assert CurrencyConverter().convert(1495, "JPY", "USD") == Decimal("10.00")

    def test_same_currency(self):
        assert CurrencyConverter().convert(Decimal("12.345"), "GBP", "GBP") == Decimal("12.35")

    def test_unknown_code(self):
        """Unknown codes are reported before the amount is looked at."""
        with pytest.raises(InvalidArgument, match="Invalid currency code: USD or XYZ"):
            CurrencyConverter().convert("not a number", "USD", "XYZ")

    @pytest.mark.parametrize("amount", ["100", None, True])
    def test_amount_must_be_number(self, amount):
        with pytest.raises(InvalidArgument, match="Amount must be a number."):
            CurrencyConverter().convert(amount, "USD", "EUR")


class TestRates:
    """Tests for rate lookup and the supported set."""

    def test_exchange_rate(self):
        rate = CurrencyConverter().get_exchange_rate("USD", "GBP")
        assert rate == Decimal("0.79")

    def test_supported(self):
        converter = CurrencyConverter()
        assert "CHF" in converter.get_supported_currencies()
        assert converter.is_supported("inr")
        assert not converter.is_supported("XYZ")

    def test_custom_table(self):
        """A custom table replaces the default rates."""
        table = ExchangeRateTable(rates={"usd": Decimal("1"), "sek": Decimal("10")})
        converter = CurrencyConverter(table)
        assert converter.get_supported_currencies() == ["USD", "SEK"]
        assert converter.convert(5, "USD", "SEK") == Decimal("50.00")

    def test_non_positive_rate(self):
        with pytest.raises(ValidationError, match="Rate for EUR must be positive"):
            ExchangeRateTable(rates={"USD": Decimal("1"), "EUR": Decimal("0")})

    def test_table_is_frozen(self):
        table = ExchangeRateTable()
        with pytest.raises(ValidationError):
            table.base = "EUR"


class TestGroupCurrencies:
    """Group currencies are limited to what the converter supports."""

    async def test_injected_converter(self):
        table = ExchangeRateTable(rates={"USD": Decimal("1"), "SEK": Decimal("10")})
        store = GroupStore(
            InMemoryGroupStorage(),
            InMemoryUserStorage(),
            converter=CurrencyConverter(table),
        )
        group = await store.create_group("Nordic trip", "Stockholm", currency="sek")
        assert group.currency == "SEK"
        with pytest.raises(InvalidArgument, match="Invalid currency code: EUR"):
            await store.create_group("Euro trip", "Paris", currency="EUR")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
