from decimal import Decimal

import pytest

from ridepay.utils.money import format_amount, from_minor_units, to_minor_units, to_money


@pytest.mark.parametrize(
    "value,expected",
    [
        ("42.5", Decimal("42.50")),
        (10, Decimal("10.00")),
        (0.1 + 0.2, Decimal("0.30")),
        (Decimal("8.335"), Decimal("8.34")),
        (Decimal("8.325"), Decimal("8.33")),
    ],
)
def test_to_money_rounds_half_up(value, expected):
    assert to_money(value) == expected


@pytest.mark.parametrize("value", ["abc", "NaN", "Infinity"])
def test_to_money_rejects_non_amounts(value):
    with pytest.raises(ValueError):
        to_money(value)


def test_minor_units():
    assert to_minor_units(Decimal("40.00")) == 4000
    assert to_minor_units("19.999") == 2000
    assert from_minor_units(7550) == Decimal("75.50")


def test_format_amount_always_has_two_decimals():
    assert format_amount(5) == "5.00"
    assert format_amount("12.5") == "12.50"
