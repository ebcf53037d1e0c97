from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.dependencies import get_current_user_optional, get_session_id
from app.models import Address, User, get_db
from app.schemas.orders import CheckoutRequest, CheckoutResponse, OrderResponse
from app.services import order_service

router = APIRouter()


def _to_address(schema) -> Address | None:
    if schema is None:
        return None
    return Address(**schema.model_dump())


@router.post(
    "",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place order from cart",
)
def checkout(
    body: CheckoutRequest,
    current_user: Annotated[User | None, Depends(get_current_user_optional)],
    session_id: Annotated[str | None, Depends(get_session_id)],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Create a pending order from the current cart (user cart, or the guest cart
    identified by the X-Session-Id header). Stock is reserved immediately.
    For Mercado Pago the response carries the payment_url to redirect to.
    """
    data = order_service.CreateOrderData(
        shipping_address=_to_address(body.shipping_address),
        billing_address=_to_address(body.billing_address),
        payment_method=body.payment_method.value,
        shipping_cost=body.shipping_cost,
        notes=body.notes,
    )
    result = order_service.create_order_from_cart(db, current_user, session_id, data)
    return CheckoutResponse(
        order=OrderResponse.model_validate(result.order),
        payment_url=result.payment_url,
        warnings=result.warnings,
    )
