from decimal import Decimal

import pytest

from app.services.money import ensure_quantity, line_total, percent_of, to_money


def test_to_money_rounds_half_up():
    assert to_money("10.005") == Decimal("10.01")
    assert to_money("10.004") == Decimal("10.00")
    assert to_money(Decimal("-1.005")) == Decimal("-1.01")


def test_to_money_never_leaks_float_representation():
    assert to_money(0.1) == Decimal("0.10")
    assert to_money(33.33) == Decimal("33.33")


def test_to_money_none_is_zero():
    assert to_money(None) == Decimal("0.00")


@pytest.mark.parametrize("value", ["abc", "NaN", "Infinity"])
def test_to_money_rejects_invalid_amounts(value):
    with pytest.raises(ValueError):
        to_money(value)


def test_percent_of_rounds_to_cents():
    assert percent_of(Decimal("33.33"), 21) == Decimal("7.00")
    assert percent_of(Decimal("10.00"), "10.5") == Decimal("1.05")


def test_line_total():
    assert line_total(Decimal("19.99"), 3) == Decimal("59.97")


@pytest.mark.parametrize("quantity", [-1, 1.5, "2", True])
def test_ensure_quantity_rejects_non_integers_and_negatives(quantity):
    with pytest.raises(ValueError):
        ensure_quantity(quantity)


def test_ensure_quantity_accepts_zero():
    assert ensure_quantity(0) == 0
