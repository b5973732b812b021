"""
Currency helpers.

Amounts are ``Decimal`` everywhere. Minor units are the integer amounts payment
gateways and ledgers use (fils for KWD, cents for USD).

Usage:
    from .currency import round_money, to_minor_units

    total = round_money(Decimal("12.3456"), "KWD")   # Decimal("12.346")
    to_minor_units(total, "KWD")                      # 12346
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

Number = Union[Decimal, int, float, str]

CURRENCY_DECIMALS: dict[str, int] = {
    "KWD": 3,
    "BHD": 3,
    "OMR": 3,
    "USD": 2,
    "EUR": 2,
    "SAR": 2,
    "AED": 2,
    "QAR": 2,
}

DEFAULT_DECIMALS = 2


def to_decimal(value: Number) -> Decimal:
    """Convert to Decimal without inheriting float representation noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def currency_decimals(currency: str) -> int:
    return CURRENCY_DECIMALS.get((currency or "").upper(), DEFAULT_DECIMALS)


def quantize_places(value: Number, places: int) -> Decimal:
    """Round half-up to a fixed number of decimal places."""
    exponent = Decimal(1).scaleb(-places)
    return to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def round_money(amount: Number, currency: str) -> Decimal:
    return quantize_places(amount, currency_decimals(currency))


def to_minor_units(amount: Number, currency: str) -> int:
    places = currency_decimals(currency)
    return int(quantize_places(amount, places).scaleb(places))


def from_minor_units(minor: int, currency: str) -> Decimal:
    places = currency_decimals(currency)
    return quantize_places(Decimal(minor).scaleb(-places), places)


def format_currency(amount: Number, currency: str) -> str:
    """Format as "12.500 KWD"."""
    code = (currency or "").upper()
    return f"{round_money(amount, code)} {code}"
