from decimal import Decimal

from pydantic import BaseModel, Field


class CartItemCreateRequest(BaseModel):
    product_id: int
    variant_id: int | None = None
    quantity: int = Field(default=1, ge=1)


class CartItemUpdateRequest(BaseModel):
    quantity: int = Field(ge=0)


class CouponApplyRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)


class CartItemResponse(BaseModel):
    id: int
    product_id: int
    variant_id: int | None = None
    name: str
    quantity: int
    unit_price: Decimal
    total: Decimal
    available_stock: int | None = None


class CartCouponResponse(BaseModel):
    id: int
    code: str
    type: str
    value: Decimal

    model_config = {"from_attributes": True}


class CartResponse(BaseModel):
    id: int
    session_id: str | None = None
    items: list[CartItemResponse]
    coupons: list[CartCouponResponse]
    subtotal: Decimal
    discount: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal
    errors: list[dict] = []
