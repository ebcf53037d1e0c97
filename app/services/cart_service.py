import logging
import uuid
from datetime import timedelta

from sqlalchemy.orm import Session

from app.config import settings
from app.errors import AppError, EntityNotFoundError, InsufficientStockError, ValidationError
from app.models.cart import Cart, CartItem
from app.models.database import utcnow
from app.models.product import Product
from app.models.user import User
from app.services.money import ensure_quantity

logger = logging.getLogger(__name__)


def _find_session_cart(db: Session, session_id: str) -> Cart | None:
    now = utcnow()
    carts = (
        db.query(Cart)
        .filter(Cart.session_id == session_id, Cart.user_id.is_(None))
        .order_by(Cart.id.desc())
        .all()
    )
    return next((cart for cart in carts if not cart.is_expired(now)), None)


def get_or_create_cart(db: Session, user: User | None = None, session_id: str | None = None) -> Cart:
    if user is not None:
        cart = db.query(Cart).filter(Cart.user_id == user.id).order_by(Cart.id).first()
        if cart is not None:
            return cart

    if user is None and session_id:
        cart = _find_session_cart(db, session_id)
        if cart is not None:
            return cart

    cart = Cart(
        user_id=user.id if user is not None else None,
        session_id=session_id or uuid.uuid4().hex,
        expires_at=None if user is not None else utcnow() + timedelta(days=settings.CART_SESSION_TTL_DAYS),
    )
    db.add(cart)
    db.commit()
    db.refresh(cart)
    return cart


def _get_active_product(db: Session, product_id: int) -> Product:
    product = db.query(Product).filter(Product.id == product_id).first()
    if product is None or not product.is_active:
        raise EntityNotFoundError("Product", product_id)
    return product


def _available_stock(product: Product, variant_id: int | None) -> int | None:
    if not product.track_stock:
        return None
    if variant_id:
        variant = next((v for v in product.variants if v.id == variant_id), None)
        return variant.stock if variant is not None else 0
    return product.stock


def _validate_stock(product: Product, quantity: int, variant_id: int | None) -> None:
    available = _available_stock(product, variant_id)
    if available is not None and quantity > available:
        raise InsufficientStockError(product.name, quantity, available)


def _item_price(product: Product, variant_id: int | None):
    if variant_id:
        variant = next((v for v in product.variants if v.id == variant_id), None)
        if variant is not None and variant.price is not None:
            return variant.price
    return product.current_price


def add_item(db: Session, cart: Cart, product_id: int, quantity: int = 1, variant_id: int | None = None) -> CartItem:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError("Invalid quantity", {"quantity": ["Quantity must be at least 1"]})
    product = _get_active_product(db, product_id)
    if variant_id and not any(v.id == variant_id and v.is_active for v in product.variants):
        raise EntityNotFoundError("ProductVariant", variant_id)

    existing = next(
        (item for item in cart.items if item.product_id == product_id and item.variant_id == variant_id),
        None,
    )
    if existing is not None:
        new_quantity = existing.quantity + quantity
        _validate_stock(product, new_quantity, variant_id)
        existing.quantity = new_quantity
        db.commit()
        db.refresh(existing)
        return existing

    _validate_stock(product, quantity, variant_id)
    item = CartItem(
        product_id=product_id,
        variant_id=variant_id,
        quantity=quantity,
        price_at_addition=_item_price(product, variant_id),
    )
    cart.items.append(item)
    db.commit()
    db.refresh(item)
    return item


def _get_item(cart: Cart, item_id: int) -> CartItem:
    item = next((item for item in cart.items if item.id == item_id), None)
    if item is None:
        raise EntityNotFoundError("CartItem", item_id)
    return item


def update_item_quantity(db: Session, cart: Cart, item_id: int, quantity: int) -> CartItem | None:
    """Set an item's quantity. Zero removes the item and returns None."""
    item = _get_item(cart, item_id)
    try:
        quantity = ensure_quantity(quantity)
    except ValueError as exc:
        raise ValidationError("Invalid quantity", {"quantity": [str(exc)]}) from exc
    if quantity == 0:
        cart.items.remove(item)
        db.commit()
        return None
    _validate_stock(item.product, quantity, item.variant_id)
    item.quantity = quantity
    db.commit()
    db.refresh(item)
    return item


def remove_item(db: Session, cart: Cart, item_id: int) -> None:
    cart.items.remove(_get_item(cart, item_id))
    db.commit()


def clear(db: Session, cart: Cart) -> None:
    cart.clear()
    db.commit()


def merge_guest_cart(db: Session, user: User, session_id: str) -> Cart:
    """Move a guest cart's items into the user's cart after login."""
    user_cart = get_or_create_cart(db, user)
    guest_cart = _find_session_cart(db, session_id)
    if guest_cart is None or guest_cart.id == user_cart.id:
        return user_cart

    for item in list(guest_cart.items):
        try:
            add_item(db, user_cart, item.product_id, item.quantity, item.variant_id)
        except AppError as exc:
            logger.info("Skipped guest cart item %s while merging: %s", item.id, exc.message)

    db.delete(guest_cart)
    db.commit()
    return user_cart


def validate_cart(cart: Cart) -> list[dict]:
    """Return one error entry per item that can no longer be ordered."""
    errors = []
    for item in cart.items:
        if item.product is None or not item.product.is_active:
            errors.append({"item_id": item.id, "error": "Product no longer available"})
            continue
        if item.variant_id and (item.variant is None or not item.variant.is_active):
            errors.append({"item_id": item.id, "error": "Product no longer available"})
            continue
        available = item.available_stock
        if available is not None and item.quantity > available:
            errors.append({"item_id": item.id, "error": "Insufficient stock", "available": available})
    return errors
