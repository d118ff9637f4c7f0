"""
Currency conversion for cross-currency transfers.

The transfer orchestrator only depends on the CurrencyConverter protocol:
convert an amount in minor units of one currency to minor units of
another, or raise a ConversionUnavailableError. StaticRateConverter is the
configured implementation: a fixed table of multipliers loaded from
settings. Live rate feeds are out of scope; a production converter would
refresh its table in the background and keep this same interface.

Rounding:
  Converted amounts are rounded half-up to whole minor units using Decimal
  arithmetic. Floats never touch an amount.
"""

from collections.abc import Iterable, Mapping
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from wallet.exceptions import RateUnavailableError, UnknownCurrencyError


class CurrencyConverter(Protocol):
    def convert(self, amount_cents: int, from_currency: str, to_currency: str) -> int:
        ...


class StaticRateConverter:
    """Converts using a fixed from -> to -> multiplier table."""

    def __init__(
        self,
        rates: Mapping[str, Mapping[str, Decimal]],
        supported_currencies: Iterable[str],
    ):
        self._supported = {code.upper() for code in supported_currencies}
        self._rates = {
            source.upper(): {target.upper(): Decimal(str(rate)) for target, rate in targets.items()}
            for source, targets in rates.items()
        }

    def convert(self, amount_cents: int, from_currency: str, to_currency: str) -> int:
        """
        Convert `amount_cents` from one currency to another.

        Same-currency conversion is the identity.

        Raises:
            UnknownCurrencyError: Either currency is not supported.
            RateUnavailableError: No rate is configured for the pair.
        """
        source = from_currency.upper()
        target = to_currency.upper()
        for code in (source, target):
            if code not in self._supported:
                raise UnknownCurrencyError(code)

        if source == target:
            return amount_cents

        rate = self._rates.get(source, {}).get(target)
        if rate is None:
            raise RateUnavailableError(source, target)

        converted = (Decimal(amount_cents) * rate).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        return int(converted)
