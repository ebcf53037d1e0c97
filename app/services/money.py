from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    """Convert to a 2-place Decimal, rounding half-up.

    Floats go through ``str`` so binary representation never leaks into
    prices (``to_money(0.1)`` is ``Decimal("0.10")``).
    """
    if value is None:
        return ZERO
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid money amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid money amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, rate: Decimal | int | str) -> Decimal:
    """Return ``rate`` percent of ``amount`` rounded half-up to cents."""
    return to_money(Decimal(amount) * Decimal(str(rate)) / HUNDRED)


def line_total(unit_price: Decimal, quantity: int) -> Decimal:
    return to_money(Decimal(unit_price) * ensure_quantity(quantity))


def ensure_quantity(quantity: int) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValueError(f"Quantity must be an integer, got {quantity!r}")
    if quantity < 0:
        raise ValueError("Quantity must not be negative")
    return quantity
