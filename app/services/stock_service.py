"""Stock reservation tied to the order lifecycle.

Reservation is all-or-nothing: every line is checked against locked rows
before any row is decremented, so a shortfall leaves stock untouched.
Release is guarded by ``Order.stock_released_at`` and restores only the
lines that were actually reserved.
"""

import logging
from collections import defaultdict
from datetime import datetime

from sqlalchemy.orm import Session

from app.errors import EntityNotFoundError, InsufficientStockError
from app.models.database import utcnow
from app.models.order import Order
from app.models.product import Product, ProductVariant
from app.services import job_queue
from app.services.money import ensure_quantity

logger = logging.getLogger(__name__)


def _lock_products(db: Session, product_ids) -> dict[int, Product]:
    if not product_ids:
        return {}
    rows = (
        db.query(Product)
        .filter(Product.id.in_(sorted(product_ids)))
        .order_by(Product.id)
        .with_for_update()
        .populate_existing()
        .all()
    )
    return {row.id: row for row in rows}


def _lock_variants(db: Session, variant_ids) -> dict[int, ProductVariant]:
    if not variant_ids:
        return {}
    rows = (
        db.query(ProductVariant)
        .filter(ProductVariant.id.in_(sorted(variant_ids)))
        .order_by(ProductVariant.id)
        .with_for_update()
        .populate_existing()
        .all()
    )
    return {row.id: row for row in rows}


def reserve(db: Session, order: Order) -> None:
    """Decrement stock for every item of ``order``.

    Does not commit. On ``InsufficientStockError`` nothing has been
    decremented and the caller rolls back the order it was building.
    """
    requested: dict[tuple[int, int | None], int] = defaultdict(int)
    for item in order.items:
        requested[(item.product_id, item.variant_id)] += ensure_quantity(item.quantity)

    products = _lock_products(db, {product_id for product_id, _ in requested})
    variants = _lock_variants(db, {variant_id for _, variant_id in requested if variant_id})

    for (product_id, variant_id), quantity in requested.items():
        product = products.get(product_id)
        if product is None:
            raise EntityNotFoundError("Product", product_id)
        if not product.track_stock:
            continue
        if variant_id:
            variant = variants.get(variant_id)
            if variant is None or variant.product_id != product_id:
                raise EntityNotFoundError("ProductVariant", variant_id)
            available = variant.stock
        else:
            available = product.stock
        if quantity > available:
            raise InsufficientStockError(product.name, quantity, available)

    for (product_id, variant_id), quantity in requested.items():
        product = products[product_id]
        if not product.track_stock:
            continue
        if variant_id:
            variants[variant_id].stock -= quantity
        else:
            product.stock -= quantity

    for item in order.items:
        item.stock_reserved = bool(products[item.product_id].track_stock)


def release(db: Session, order: Order, now: datetime | None = None) -> bool:
    """Give back reserved stock once. Returns False if already released.

    Expects ``order`` to be locked by the caller. Does not commit.
    """
    if order.stock_released_at is not None:
        return False

    reserved = [item for item in order.items if item.stock_reserved]
    products = _lock_products(db, {item.product_id for item in reserved})
    variants = _lock_variants(db, {item.variant_id for item in reserved if item.variant_id})

    for item in reserved:
        if item.variant_id and item.variant_id in variants:
            variants[item.variant_id].stock += item.quantity
        elif item.product_id in products:
            products[item.product_id].stock += item.quantity
        else:
            logger.warning(
                "Product %s for order %s no longer exists, stock not restored",
                item.product_id,
                order.id,
            )

    order.stock_released_at = now or utcnow()
    logger.info("Released stock for order %s (%s lines)", order.id, len(reserved))
    return True


def adjust(db: Session, product_id: int, quantity: int, operation: str = "increment", variant_id: int | None = None) -> bool:
    """Apply an out-of-band stock change (restock or write-off).

    Untracked products are left alone. Stock never goes below zero.
    """
    ensure_quantity(quantity)
    if operation not in {"increment", "decrement"}:
        raise ValueError(f"Unknown stock operation: {operation}")

    product = _lock_products(db, {product_id}).get(product_id)
    if product is None:
        raise EntityNotFoundError("Product", product_id)
    if not product.track_stock:
        return False

    target = product
    if variant_id:
        target = _lock_variants(db, {variant_id}).get(variant_id)
        if target is None or target.product_id != product_id:
            raise EntityNotFoundError("ProductVariant", variant_id)

    if operation == "increment":
        target.stock += quantity
    else:
        target.stock = max(0, target.stock - quantity)
    return True


UPDATE_PRODUCT_STOCK = "update_product_stock"


def queue_stock_update(db: Session, product_id: int, quantity: int, operation: str = "increment", variant_id: int | None = None):
    ensure_quantity(quantity)
    if operation not in {"increment", "decrement"}:
        raise ValueError(f"Unknown stock operation: {operation}")
    return job_queue.enqueue(
        db,
        UPDATE_PRODUCT_STOCK,
        {"product_id": product_id, "variant_id": variant_id, "quantity": quantity, "operation": operation},
    )


@job_queue.job_handler(UPDATE_PRODUCT_STOCK)
def handle_update_product_stock(db: Session, payload: dict) -> None:
    adjust(
        db,
        payload["product_id"],
        payload["quantity"],
        payload.get("operation", "increment"),
        payload.get("variant_id"),
    )
    db.commit()
