from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.dependencies import get_current_user
from app.models import User, get_db
from app.schemas.orders import (
    OrderResponse,
    OrderSummaryResponse,
    PaymentMethodResponse,
    PaymentMethodsResponse,
    PaymentResponse,
)
from app.services import order_service, payment_service
from app.services.payment_gateways import get_payment_gateways

router = APIRouter()


@router.get(
    "/me",
    response_model=list[OrderSummaryResponse],
    summary="List my orders",
)
def my_orders(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
):
    """Returns the orders of the current user, newest first."""
    orders = order_service.list_for_user(db, current_user.id, limit=limit, offset=offset)
    return [OrderSummaryResponse.model_validate(order) for order in orders]


@router.get(
    "/payment-methods",
    response_model=PaymentMethodsResponse,
    summary="List payment methods",
)
def payment_methods():
    gateways = get_payment_gateways().values()
    return PaymentMethodsResponse(
        available_methods=[
            PaymentMethodResponse(method=gateway.method, label=gateway.label, online=gateway.online)
            for gateway in gateways
        ],
        enabled_methods=[gateway.method for gateway in gateways if gateway.enabled],
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order",
)
def get_order(
    order_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    """Returns one of the current user's orders with items and status history."""
    order = order_service.find_order(db, order_id, current_user.id)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel order",
)
def cancel_order(
    order_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    """Cancels a pending or processing order and returns its stock."""
    order = order_service.cancel_order(db, order_id, current_user.id)
    return OrderResponse.model_validate(order)


@router.post(
    "/{order_id}/pay",
    response_model=PaymentResponse,
    summary="Create a new payment link",
)
def pay_order(
    order_id: int,
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    """Opens a new Mercado Pago payment attempt for a pending or failed order."""
    preference = payment_service.create_payment_preference(db, order_id, current_user)
    return PaymentResponse(
        payment_id=preference.payment_id,
        preference_id=preference.preference_id,
        payment_url=preference.redirect_url,
    )
