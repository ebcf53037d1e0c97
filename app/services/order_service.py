"""Checkout and caller-driven order changes.

Every status change goes through an ``Order`` transition method under the
order lock; notifications are queued only after the transition committed.
"""

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal

from sqlalchemy.orm import Session

from app.config import settings
from app.errors import AppError, EntityNotFoundError, InvalidOperationError, ValidationError
from app.models.database import utcnow
from app.models.enums import OrderStatus
from app.models.events import OrderEvent, OrderEventKind
from app.models.order import HISTORY_ORDER_CREATED, Address, Order, OrderItem, generate_order_number
from app.models.user import User
from app.services import cart_service, coupon_service, notification_service, payment_service, stock_service
from app.services.mercadopago_service import MercadoPagoClient
from app.services.money import ZERO
from app.services.order_calculation import calculate
from app.services.order_lock import run_order_transition
from app.services.payment_gateways import get_payment_gateway

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 10


@dataclass
class CreateOrderData:
    shipping_address: Address
    payment_method: str
    billing_address: Address | None = None
    shipping_cost: Decimal = ZERO
    notes: str | None = None


@dataclass
class CheckoutResult:
    order: Order
    payment_url: str | None = None
    warnings: list[str] = field(default_factory=list)


def _unique_order_number(db: Session) -> str:
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        number = generate_order_number()
        if db.query(Order.id).filter(Order.order_number == number).first() is None:
            return number
    raise RuntimeError("Could not generate a unique order number")


def _validate_payment_method(method: str) -> None:
    gateway = get_payment_gateway(method)
    if gateway is None or not gateway.enabled:
        raise ValidationError(
            "Invalid payment method",
            {"payment_method": [f"Payment method '{method}' is not available"]},
        )


def _build_items(cart) -> list[OrderItem]:
    items = []
    for cart_item in cart.items:
        product = cart_item.product
        variant = cart_item.variant
        items.append(
            OrderItem(
                product_id=product.id,
                variant_id=cart_item.variant_id,
                name=product.name,
                sku=variant.sku if variant is not None else product.sku,
                quantity=cart_item.quantity,
                unit_price=cart_item.current_price,
                total=cart_item.total,
                options=dict(variant.attributes) if variant is not None and variant.attributes else None,
            )
        )
    return items


def create_order_from_cart(
    db: Session,
    user: User | None,
    session_id: str | None,
    data: CreateOrderData,
    client: MercadoPagoClient | None = None,
) -> CheckoutResult:
    """Turn the shopper's cart into a pending order.

    Stock is reserved and coupon usage recorded in the same transaction as
    the order itself. For online payment a Mercado Pago preference is then
    created; if that fails the order stays pending and can be paid later.
    """
    cart = cart_service.get_or_create_cart(db, user, session_id)
    if cart.is_empty:
        raise InvalidOperationError("Your cart is empty", "EMPTY_CART")

    _validate_payment_method(data.payment_method)

    cart_errors = cart_service.validate_cart(cart)
    if cart_errors:
        raise InvalidOperationError(
            "Some items in your cart are no longer available",
            "CART_VALIDATION_FAILED",
            {"items": cart_errors},
        )

    shipping = data.shipping_address
    if user is None and not shipping.email:
        raise ValidationError(
            "A contact email is required for guest checkout",
            {"shipping_address.email": ["This field is required"]},
        )
    if user is not None and not shipping.email:
        shipping.email = user.email

    applied_coupons = coupon_service.coupon_discounts(cart, strict=True)
    discount = sum((amount for _, amount in applied_coupons), ZERO)
    totals = calculate(cart, data.shipping_cost, discount)

    order = Order(
        order_number=_unique_order_number(db),
        user_id=user.id if user is not None else None,
        payment_method=data.payment_method,
        currency=settings.CURRENCY,
        subtotal=totals.subtotal,
        shipping_cost=totals.shipping,
        tax=totals.tax,
        discount=totals.discount,
        total=totals.total,
        notes=data.notes,
        shipping_address=shipping,
        billing_address=data.billing_address or replace(shipping),
    )
    order.items = _build_items(cart)
    order.add_history(HISTORY_ORDER_CREATED, changed_by=user.id if user is not None else None)

    try:
        db.add(order)
        db.flush()
        stock_service.reserve(db, order)
        for coupon, amount in applied_coupons:
            coupon_service.record_coupon_usage(db, coupon, order, amount, user)
        cart.clear()
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(
        "Order created: order=%s number=%s total=%s %s method=%s",
        order.id,
        order.order_number,
        order.total,
        order.currency,
        order.payment_method,
    )

    notification_service.dispatch_after_commit(db, order.id, [OrderEvent(OrderEventKind.CREATED, order.id)])
    try:
        notification_service.schedule_pending_reminder(
            db, order.id, delay_seconds=notification_service.pending_reminder_delay_seconds()
        )
    except Exception:
        db.rollback()
        logger.exception("Failed to schedule payment reminder for order %s", order.id)

    result = CheckoutResult(order=order)
    gateway = get_payment_gateway(order.payment_method)
    if gateway is not None and gateway.online:
        try:
            preference = payment_service.create_payment_preference(db, order.id, user, client)
            result.payment_url = preference.redirect_url
        except AppError as exc:
            logger.warning(
                "Order %s created without payment link: %s (%s)",
                order.id,
                exc.message,
                exc.error_code,
            )
            result.warnings.append("The payment link could not be created. Please retry the payment.")
        db.refresh(order)
    return result


def find_order(db: Session, order_id: int, user_id: int | None = None) -> Order:
    """Load an order, scoped to ``user_id`` when given."""
    query = db.query(Order).filter(Order.id == order_id)
    if user_id is not None:
        query = query.filter(Order.user_id == user_id)
    order = query.first()
    if order is None:
        raise EntityNotFoundError("Order", order_id)
    return order


def list_for_user(db: Session, user_id: int, limit: int = 20, offset: int = 0) -> list[Order]:
    return (
        db.query(Order)
        .filter(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def _cancel(db: Session, order: Order, notes: str, changed_by: int | None) -> list[OrderEvent]:
    now = utcnow()
    events = order.cancel(now, notes, changed_by)
    stock_service.release(db, order, now)
    return events


def cancel_order(db: Session, order_id: int, user_id: int | None = None) -> Order:
    """Cancel an order on behalf of its owner and give its stock back."""
    find_order(db, order_id, user_id)
    events = run_order_transition(
        db,
        order_id,
        lambda order: _cancel(db, order, "Cancelled by customer", user_id),
    )
    logger.info("Order %s cancelled by customer %s", order_id, user_id)
    notification_service.dispatch_after_commit(db, order_id, events)
    return find_order(db, order_id)


def update_order_status(
    db: Session,
    order_id: int,
    new_status: OrderStatus | str,
    changed_by: int | None = None,
    notes: str | None = None,
) -> Order:
    """Admin status change: ship, deliver, cancel or refund."""
    try:
        new_status = OrderStatus(new_status)
    except ValueError as exc:
        raise ValidationError("Invalid status", {"status": [f"Unknown status '{new_status}'"]}) from exc

    def transition(order: Order) -> list[OrderEvent]:
        now = utcnow()
        if new_status in (OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            return order.advance_fulfilment(new_status, now, notes, changed_by)
        if new_status == OrderStatus.CANCELLED:
            return _cancel(db, order, notes, changed_by)
        if new_status == OrderStatus.REFUNDED:
            return order.refund(notes, changed_by)
        raise InvalidOperationError(
            f"Cannot change order status from {order.status} to {new_status.value}",
            "INVALID_STATUS_TRANSITION",
            {"from": order.status, "to": new_status.value},
        )

    events = run_order_transition(db, order_id, transition)
    logger.info("Order %s moved to %s by user %s", order_id, new_status.value, changed_by)
    notification_service.dispatch_after_commit(db, order_id, events)
    return find_order(db, order_id)
