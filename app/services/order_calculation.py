from dataclasses import dataclass
from decimal import Decimal

from app.config import settings
from app.models.cart import Cart
from app.services.money import ZERO, percent_of, to_money


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal


def calculate_shipping(subtotal: Decimal, base_cost: Decimal) -> Decimal:
    threshold = to_money(settings.FREE_SHIPPING_THRESHOLD)
    if threshold > ZERO and subtotal >= threshold:
        return ZERO
    return to_money(base_cost)


def calculate_tax(subtotal: Decimal) -> Decimal:
    if not settings.TAX_ENABLED or settings.TAX_INCLUDED_IN_PRICES:
        return ZERO
    return percent_of(subtotal, settings.TAX_RATE)


def calculate_totals(
    subtotal: Decimal,
    shipping_cost: Decimal | int | str = ZERO,
    discount: Decimal | int | str = ZERO,
) -> OrderTotals:
    subtotal = to_money(subtotal)
    shipping = calculate_shipping(subtotal, to_money(shipping_cost))
    tax = calculate_tax(subtotal)
    discount = min(to_money(discount), subtotal)
    total = subtotal + shipping + tax - discount
    return OrderTotals(subtotal=subtotal, shipping=shipping, tax=tax, discount=discount, total=total)


def calculate(cart: Cart, shipping_cost: Decimal | int | str = ZERO, discount: Decimal | int | str = ZERO) -> OrderTotals:
    return calculate_totals(cart.subtotal, shipping_cost, discount)
