from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.dependencies import get_current_user, get_current_user_optional, get_session_id
from app.models import Cart, User, get_db
from app.schemas.cart import (
    CartCouponResponse,
    CartItemCreateRequest,
    CartItemResponse,
    CartItemUpdateRequest,
    CartResponse,
    CouponApplyRequest,
)
from app.services import cart_service, coupon_service
from app.services.order_calculation import calculate

router = APIRouter()


def _cart_response(cart: Cart) -> CartResponse:
    discount = coupon_service.calculate_cart_discount(cart)
    totals = calculate(cart, discount=discount)
    return CartResponse(
        id=cart.id,
        session_id=cart.session_id,
        items=[
            CartItemResponse(
                id=item.id,
                product_id=item.product_id,
                variant_id=item.variant_id,
                name=item.product.name,
                quantity=item.quantity,
                unit_price=item.current_price,
                total=item.total,
                available_stock=item.available_stock,
            )
            for item in cart.items
        ],
        coupons=[CartCouponResponse.model_validate(coupon) for coupon in cart.coupons],
        subtotal=totals.subtotal,
        discount=totals.discount,
        shipping=totals.shipping,
        tax=totals.tax,
        total=totals.total,
        errors=cart_service.validate_cart(cart),
    )


def _current_cart(
    current_user: Annotated[User | None, Depends(get_current_user_optional)],
    session_id: Annotated[str | None, Depends(get_session_id)],
    db: Annotated[Session, Depends(get_db)],
) -> Cart:
    return cart_service.get_or_create_cart(db, current_user, session_id)


@router.get("", response_model=CartResponse, summary="Get cart")
def get_cart(cart: Annotated[Cart, Depends(_current_cart)]):
    """Returns the cart with current prices. Guests pass their cart id in X-Session-Id."""
    return _cart_response(cart)


@router.post("/items", response_model=CartResponse, status_code=status.HTTP_201_CREATED, summary="Add item")
def add_item(
    body: CartItemCreateRequest,
    cart: Annotated[Cart, Depends(_current_cart)],
    db: Annotated[Session, Depends(get_db)],
):
    cart_service.add_item(db, cart, body.product_id, body.quantity, body.variant_id)
    return _cart_response(cart)


@router.patch("/items/{item_id}", response_model=CartResponse, summary="Change item quantity")
def update_item(
    item_id: int,
    body: CartItemUpdateRequest,
    cart: Annotated[Cart, Depends(_current_cart)],
    db: Annotated[Session, Depends(get_db)],
):
    """Sets the quantity of a cart line; 0 removes it."""
    cart_service.update_item_quantity(db, cart, item_id, body.quantity)
    return _cart_response(cart)


@router.delete("/items/{item_id}", response_model=CartResponse, summary="Remove item")
def remove_item(
    item_id: int,
    cart: Annotated[Cart, Depends(_current_cart)],
    db: Annotated[Session, Depends(get_db)],
):
    cart_service.remove_item(db, cart, item_id)
    return _cart_response(cart)


@router.delete("", response_model=CartResponse, summary="Empty cart")
def clear_cart(
    cart: Annotated[Cart, Depends(_current_cart)],
    db: Annotated[Session, Depends(get_db)],
):
    cart_service.clear(db, cart)
    return _cart_response(cart)


@router.post("/coupons", response_model=CartResponse, summary="Apply coupon")
def apply_coupon(
    body: CouponApplyRequest,
    cart: Annotated[Cart, Depends(_current_cart)],
    db: Annotated[Session, Depends(get_db)],
):
    coupon_service.apply_coupon_to_cart(db, cart, body.code)
    return _cart_response(cart)


@router.delete("/coupons/{coupon_id}", response_model=CartResponse, summary="Remove coupon")
def remove_coupon(
    coupon_id: int,
    cart: Annotated[Cart, Depends(_current_cart)],
    db: Annotated[Session, Depends(get_db)],
):
    coupon_service.remove_coupon_from_cart(db, cart, coupon_id)
    return _cart_response(cart)


@router.post("/merge", response_model=CartResponse, summary="Merge guest cart after login")
def merge_cart(
    current_user: Annotated[User, Depends(get_current_user)],
    session_id: Annotated[str | None, Depends(get_session_id)],
    db: Annotated[Session, Depends(get_db)],
):
    """Moves the items of the guest cart in X-Session-Id into the user's cart."""
    if not session_id:
        return _cart_response(cart_service.get_or_create_cart(db, current_user))
    return _cart_response(cart_service.merge_guest_cart(db, current_user, session_id))
