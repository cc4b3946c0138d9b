"""Money helpers: all amounts are Decimal, rounded half-up to the currency's minor unit"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Union

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

# ISO 4217 currencies without a minor unit
ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})


def to_decimal(value: Number) -> Decimal:
    """Convert without going through binary float artefacts"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quantize(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Number, rate: Number) -> Decimal:
    """``rate`` percent of ``amount``, rounded to cents"""
    return quantize(to_decimal(amount) * to_decimal(rate) / HUNDRED)


def money_sum(values: Iterable[Number]) -> Decimal:
    return quantize(sum((to_decimal(v) for v in values), Decimal("0")))


def minor_unit_factor(currency: str) -> int:
    return 1 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 100


def to_minor_units(amount: Number, currency: str) -> int:
    """19.99 USD -> 1999"""
    factor = minor_unit_factor(currency)
    return int((to_decimal(amount) * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str) -> Decimal:
    """1999 USD -> Decimal('19.99')"""
    factor = minor_unit_factor(currency)
    return quantize(Decimal(amount) / factor)
