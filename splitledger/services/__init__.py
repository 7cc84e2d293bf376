"""External service integrations: storage backends and currency conversion."""

from splitledger.services.currency import (
    DEFAULT_RATES,
    CurrencyConverter,
    ExchangeRateTable,
)

__all__ = [
    "DEFAULT_RATES",
    "CurrencyConverter",
    "ExchangeRateTable",
]
