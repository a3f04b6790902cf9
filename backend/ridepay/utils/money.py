"""Decimal money helpers shared by the hold service and the provider adapters."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

CENT = Decimal("0.01")

MoneyLike = Union[Decimal, int, float, str]


def to_money(value: MoneyLike) -> Decimal:
    """Coerce to a Decimal rounded half-up to whole cents."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid monetary amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid monetary amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: MoneyLike) -> int:
    """Convert a major-unit amount (e.g. dollars) to integer minor units (cents)."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(cents: int) -> Decimal:
    return to_money(Decimal(int(cents)) / 100)


def format_amount(amount: MoneyLike) -> str:
    """Render as a fixed two-decimal string, the format PayPal expects."""
    return f"{to_money(amount):.2f}"
