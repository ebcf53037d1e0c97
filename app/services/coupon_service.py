import logging
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import CouponAlreadyUsedError, InvalidCouponError
from app.models.cart import Cart
from app.models.coupon import Coupon, CouponUsage
from app.models.database import as_utc, utcnow
from app.models.order import Order
from app.models.user import User
from app.services.money import ZERO, to_money

logger = logging.getLogger(__name__)


def check_coupon(coupon: Coupon, amount: Decimal, now=None) -> Coupon:
    """Raise InvalidCouponError unless ``coupon`` applies to ``amount``."""
    now = now or utcnow()
    if not coupon.is_active:
        raise InvalidCouponError("This coupon is not active", "COUPON_INACTIVE")
    if coupon.starts_at is not None and as_utc(coupon.starts_at) > now:
        raise InvalidCouponError(
            "This coupon is not yet valid",
            "COUPON_NOT_STARTED",
            {"starts_at": as_utc(coupon.starts_at).isoformat()},
        )
    if coupon.expires_at is not None and as_utc(coupon.expires_at) <= now:
        raise InvalidCouponError(
            "This coupon has expired",
            "COUPON_EXPIRED",
            {"expired_at": as_utc(coupon.expires_at).isoformat()},
        )
    if coupon.usage_exhausted:
        raise InvalidCouponError(
            "This coupon has reached its maximum usage limit",
            "COUPON_MAX_USES_REACHED",
            {"max_uses": coupon.max_uses},
        )
    if coupon.minimum_amount and amount < coupon.minimum_amount:
        minimum = to_money(coupon.minimum_amount)
        raise InvalidCouponError(
            f"Cart subtotal must be at least ${minimum} to use this coupon",
            "COUPON_MINIMUM_AMOUNT_NOT_REACHED",
            {"minimum_amount": str(minimum), "current_amount": str(to_money(amount))},
        )
    return coupon


def validate_coupon(db: Session, code: str, amount: Decimal) -> Coupon:
    coupon = db.query(Coupon).filter(Coupon.code == code.strip()).first()
    if coupon is None:
        raise InvalidCouponError("Invalid coupon code", "COUPON_NOT_FOUND")
    return check_coupon(coupon, amount)


def apply_coupon_to_cart(db: Session, cart: Cart, code: str) -> Coupon:
    coupon = validate_coupon(db, code, cart.subtotal)
    if coupon in cart.coupons:
        raise CouponAlreadyUsedError(
            "This coupon has already been applied to your cart",
            "COUPON_ALREADY_APPLIED",
        )
    cart.coupons.append(coupon)
    db.commit()
    return coupon


def remove_coupon_from_cart(db: Session, cart: Cart, coupon_id: int) -> None:
    coupon = next((c for c in cart.coupons if c.id == coupon_id), None)
    if coupon is None:
        raise InvalidCouponError(
            "This coupon is not applied to your cart",
            "COUPON_NOT_APPLIED_TO_CART",
        )
    cart.coupons.remove(coupon)
    db.commit()


def coupon_discounts(cart: Cart, now=None, strict: bool = False) -> list[tuple[Coupon, Decimal]]:
    """Apply cart coupons in order, each against what is left to pay.

    Coupons that no longer apply are skipped, or raise InvalidCouponError
    when ``strict`` is set (checkout must not silently drop a discount).
    """
    now = now or utcnow()
    subtotal = cart.subtotal
    applied = []
    total_discount = ZERO
    for coupon in cart.coupons:
        remaining = subtotal - total_discount
        if strict:
            try:
                check_coupon(coupon, remaining, now)
            except InvalidCouponError as exc:
                raise InvalidCouponError(
                    f"Coupon '{coupon.code}' is no longer valid: {exc.message}",
                    metadata={"coupon_code": coupon.code, "reason": exc.error_code},
                ) from exc
        elif not coupon.is_valid_for_amount(remaining, now):
            continue
        discount = coupon.calculate_discount(remaining)
        applied.append((coupon, discount))
        total_discount += discount
    return applied


def calculate_cart_discount(cart: Cart) -> Decimal:
    return to_money(sum((discount for _, discount in coupon_discounts(cart)), ZERO))


def record_coupon_usage(
    db: Session,
    coupon: Coupon,
    order: Order,
    discount_amount: Decimal,
    user: User | None = None,
) -> CouponUsage:
    """Record that ``order`` consumed ``coupon``.

    Runs inside the caller's transaction. A second usage of the same coupon
    by the same order is rejected, and ``used_count`` is bumped with a
    conditional UPDATE so concurrent checkouts cannot exceed ``max_uses``.
    """
    duplicate = (
        db.query(CouponUsage.id)
        .filter(CouponUsage.coupon_id == coupon.id, CouponUsage.order_id == order.id)
        .first()
    )
    if duplicate is not None:
        raise CouponAlreadyUsedError(
            "This coupon was already used for this order",
            metadata={"coupon_code": coupon.code, "order_id": order.id},
        )

    statement = update(Coupon).where(Coupon.id == coupon.id)
    if coupon.max_uses:
        statement = statement.where(Coupon.used_count < coupon.max_uses)
    result = db.execute(
        statement.values(used_count=Coupon.used_count + 1).execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InvalidCouponError(
            "This coupon has reached its maximum usage limit",
            "COUPON_MAX_USES_REACHED",
            {"max_uses": coupon.max_uses},
        )

    usage = CouponUsage(
        coupon_id=coupon.id,
        order_id=order.id,
        user_id=user.id if user is not None else None,
        discount_amount=to_money(discount_amount),
    )
    db.add(usage)
    try:
        db.flush()
    except IntegrityError as exc:
        raise CouponAlreadyUsedError(
            "This coupon was already used for this order",
            metadata={"coupon_code": coupon.code, "order_id": order.id},
        ) from exc
    db.expire(coupon, ["used_count"])

    logger.info(
        "Coupon usage recorded: order=%s coupon=%s discount=%s",
        order.id,
        coupon.code,
        usage.discount_amount,
    )
    return usage
