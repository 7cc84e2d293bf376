"""
Currency Converter Service

DESIGN DECISION: Exchange rates live in an immutable rate table that is
injected into the converter, instead of process-wide module state.
This allows us to:
1. Swap in a fixed table for tests
2. Plug a live-rate source in later without touching callers
3. Validate group currencies against exactly the codes we can convert

Currency is stored per group; balances are never converted or
aggregated across currencies.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from splitledger.errors import ErrorRule, InvalidArgument
from splitledger.validation import to_money


DEFAULT_RATES: dict[str, Decimal] = {
    "USD": Decimal("1.0"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "JPY": Decimal("149.50"),
    "CAD": Decimal("1.36"),
    "AUD": Decimal("1.53"),
    "CHF": Decimal("0.88"),
    "CNY": Decimal("7.24"),
    "INR": Decimal("83.12"),
    "MXN": Decimal("17.08"),
}


class ExchangeRateTable(BaseModel):
    """
    Rates relative to `base` (units of currency per one unit of base).
    """

    model_config = ConfigDict(frozen=True)

    base: str = Field(default="USD", min_length=3, max_length=3)
    rates: dict[str, Decimal] = Field(default_factory=lambda: dict(DEFAULT_RATES))

    @field_validator('rates')
    @classmethod
    def rates_positive(cls, v: dict[str, Decimal]) -> dict[str, Decimal]:
        for code, rate in v.items():
            if rate <= 0:
                raise ValueError(f"Rate for {code} must be positive")
        return {code.upper(): rate for code, rate in v.items()}

    @field_validator('base')
    @classmethod
    def base_upper(cls, v: str) -> str:
        return v.upper()


class CurrencyConverter:
    """
    Converts amounts between the currencies of a rate table.

    Usage:
        converter = CurrencyConverter()
        converter.convert(100, "USD", "EUR")  # Decimal("92.00")
    """

    def __init__(self, table: Optional[ExchangeRateTable] = None):
        self._table = table or ExchangeRateTable()

    @property
    def table(self) -> ExchangeRateTable:
        return self._table

    def _rates_for(self, from_currency: str, to_currency: str) -> tuple[Decimal, Decimal]:
        rates = self._table.rates
        if from_currency not in rates or to_currency not in rates:
            raise InvalidArgument(
                f"Invalid currency code: {from_currency} or {to_currency}",
                field="currency",
                rule=ErrorRule.OUT_OF_RANGE,
            )
        return rates[from_currency], rates[to_currency]

    def convert(self, amount: Any, from_currency: str, to_currency: str) -> Decimal:
        """
        Convert an amount between two supported currencies.

        Args:
            amount: Number to convert (int, float or Decimal)
            from_currency: Source currency code
            to_currency: Target currency code

        Returns:
            Converted amount rounded to two decimals

        Raises:
            InvalidArgument: If either code is unsupported or amount is not a number
        """
        from_rate, to_rate = self._rates_for(from_currency, to_currency)
        if isinstance(amount, bool) or not isinstance(amount, (int, float, Decimal)):
            raise InvalidArgument("Amount must be a number.", field="amount", rule=ErrorRule.WRONG_TYPE)
        try:
            value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        except InvalidOperation:
            raise InvalidArgument("Amount must be a number.", field="amount", rule=ErrorRule.MALFORMED)

        # Convert to the base currency first, then to the target
        return to_money(value / from_rate * to_rate)

    def get_exchange_rate(self, from_currency: str, to_currency: str) -> Decimal:
        """Units of `to_currency` per one unit of `from_currency`."""
        from_rate, to_rate = self._rates_for(from_currency, to_currency)
        return to_rate / from_rate

    def get_supported_currencies(self) -> list[str]:
        return list(self._table.rates.keys())

    def is_supported(self, code: str) -> bool:
        return isinstance(code, str) and code.upper() in self._table.rates
