"""Fixed-point monetary values.

An Amount is an integer count of a currency's smallest unit, so token and
fiat values are stored and compared without floating-point drift.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Context, Decimal
from functools import total_ordering
from typing import Optional, Union

from .exceptions import IncompatibleUnitError, PrecisionLossError

DecimalLike = Union[Decimal, int, str]


@dataclass(frozen=True, slots=True)
class Currency:
    """A unit of account and the exponent of its smallest unit."""

    name: str
    symbol: str
    decimal_places: int

    def __str__(self) -> str:
        return self.symbol


STORJ_TOKEN = Currency(name="STORJ Token", symbol="STORJ", decimal_places=8)
US_DOLLARS = Currency(name="US dollars", symbol="USD", decimal_places=2)
# Fiat-equivalent values reported by the provider are kept in micro-dollars.
US_DOLLARS_MICRO = Currency(name="micro US dollars", symbol="uUSD", decimal_places=6)

CURRENCY_REGISTRY: dict[str, Currency] = {
    c.symbol: c for c in (STORJ_TOKEN, US_DOLLARS, US_DOLLARS_MICRO)
}


def get_currency(symbol: str) -> Currency:
    try:
        return CURRENCY_REGISTRY[symbol]
    except KeyError as exc:
        raise ValueError(f"unknown currency: {symbol}") from exc


def _exact_context(digits: int) -> Context:
    # Enough precision that shifting the exponent never rounds.
    return Context(prec=max(digits, 1) + 2)


@total_ordering
@dataclass(frozen=True, slots=True, eq=False)
class Amount:
    """An exact quantity of a single currency.

    Amounts hash by value and currency, but equality raises across
    currencies, so a set or dict keyed by Amount must hold one currency.
    """

    base_units: int
    currency: Currency

    @classmethod
    def from_base_units(cls, units: int, currency: Currency) -> "Amount":
        if isinstance(units, bool) or not isinstance(units, int):
            raise TypeError(f"base units must be an int, got {type(units).__name__}")
        return cls(base_units=units, currency=currency)

    @classmethod
    def from_decimal(
        cls,
        value: DecimalLike,
        currency: Currency,
        rounding: Optional[str] = None,
    ) -> "Amount":
        """Build an Amount from a decimal value.

        Raises PrecisionLossError when the value carries more fractional digits
        than the currency's smallest unit, unless a decimal rounding mode
        (e.g. ``decimal.ROUND_HALF_UP``) is given explicitly.
        """
        if isinstance(value, float):
            raise TypeError("float values are not accepted, use Decimal or str")
        d = value if isinstance(value, Decimal) else Decimal(value)
        if not d.is_finite():
            raise ValueError(f"amount must be finite, got {d}")

        ctx = _exact_context(len(d.as_tuple().digits) + currency.decimal_places)
        scaled = d.scaleb(currency.decimal_places, context=ctx)
        integral = scaled.to_integral_value(rounding=rounding, context=ctx)
        if integral != scaled and rounding is None:
            raise PrecisionLossError(str(d), currency.symbol, currency.decimal_places)
        return cls(base_units=int(integral), currency=currency)

    def as_decimal(self) -> Decimal:
        ctx = _exact_context(len(str(abs(self.base_units))))
        return Decimal(self.base_units).scaleb(-self.currency.decimal_places, context=ctx)

    def _check(self, other: "Amount") -> None:
        if self.currency != other.currency:
            raise IncompatibleUnitError(self.currency.symbol, other.currency.symbol)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Amount):
            return NotImplemented
        self._check(other)
        return self.base_units == other.base_units

    def __lt__(self, other: "Amount") -> bool:
        if not isinstance(other, Amount):
            return NotImplemented
        self._check(other)
        return self.base_units < other.base_units

    def __hash__(self) -> int:
        return hash((self.base_units, self.currency))

    def __add__(self, other: "Amount") -> "Amount":
        if not isinstance(other, Amount):
            return NotImplemented
        self._check(other)
        return Amount(self.base_units + other.base_units, self.currency)

    def __sub__(self, other: "Amount") -> "Amount":
        if not isinstance(other, Amount):
            return NotImplemented
        self._check(other)
        return Amount(self.base_units - other.base_units, self.currency)

    def __neg__(self) -> "Amount":
        return Amount(-self.base_units, self.currency)

    def is_zero(self) -> bool:
        return self.base_units == 0

    def __str__(self) -> str:
        return f"{self.as_decimal():f} {self.currency.symbol}"

    def __repr__(self) -> str:
        return f"Amount({self.as_decimal():f}, {self.currency.symbol})"
