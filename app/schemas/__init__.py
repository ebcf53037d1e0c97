from app.schemas.cart import CartItemCreateRequest, CartItemUpdateRequest, CartResponse, CouponApplyRequest
from app.schemas.orders import (
    CheckoutRequest,
    CheckoutResponse,
    OrderResponse,
    OrderStatusUpdateRequest,
    OrderSummaryResponse,
    PaymentMethodsResponse,
)

__all__ = [
    "CartItemCreateRequest",
    "CartItemUpdateRequest",
    "CartResponse",
    "CouponApplyRequest",
    "CheckoutRequest",
    "CheckoutResponse",
    "OrderResponse",
    "OrderStatusUpdateRequest",
    "OrderSummaryResponse",
    "PaymentMethodsResponse",
]
