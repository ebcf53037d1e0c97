from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, EmailStr, Field

from app.models.enums import OrderStatus, PaymentMethod


class AddressSchema(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=64)
    address: str = Field(min_length=1, max_length=255)
    address_line_2: str | None = Field(default=None, max_length=255)
    city: str = Field(min_length=1, max_length=128)
    state: str | None = Field(default=None, max_length=128)
    postal_code: str = Field(min_length=1, max_length=32)
    country: str = Field(min_length=2, max_length=2)

    model_config = {"from_attributes": True}


class CheckoutRequest(BaseModel):
    shipping_address: AddressSchema
    billing_address: AddressSchema | None = None
    payment_method: PaymentMethod = PaymentMethod.MERCADO_PAGO
    shipping_cost: Decimal = Field(default=Decimal("0"), ge=0)
    notes: str | None = Field(default=None, max_length=2000)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "shipping_address": {
                        "name": "Ana Perez",
                        "email": "ana@example.com",
                        "phone": "+54 11 5555-5555",
                        "address": "Av. Corrientes 1234",
                        "city": "Buenos Aires",
                        "state": "CABA",
                        "postal_code": "C1043",
                        "country": "AR",
                    },
                    "payment_method": "mercado_pago",
                    "shipping_cost": "1500.00",
                }
            ]
        }
    }


class OrderItemResponse(BaseModel):
    id: int
    product_id: int
    variant_id: int | None = None
    name: str
    sku: str | None = None
    quantity: int
    unit_price: Decimal
    total: Decimal
    options: dict | None = None

    model_config = {"from_attributes": True}


class OrderHistoryResponse(BaseModel):
    status: str
    notes: str | None = None
    changed_by: int | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    id: int
    order_number: str
    status: str
    payment_status: str
    payment_method: str
    currency: str
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    notes: str | None = None
    shipping_address: AddressSchema
    billing_address: AddressSchema
    items: list[OrderItemResponse]
    history: list[OrderHistoryResponse]
    paid_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class OrderSummaryResponse(BaseModel):
    id: int
    order_number: str
    status: str
    payment_status: str
    total: Decimal
    currency: str
    item_count: int
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class CheckoutResponse(BaseModel):
    order: OrderResponse
    payment_url: str | None = None
    warnings: list[str] = []


class PaymentResponse(BaseModel):
    payment_id: int
    preference_id: str
    payment_url: str | None = None


class PaymentMethodResponse(BaseModel):
    method: PaymentMethod
    label: str
    online: bool


class PaymentMethodsResponse(BaseModel):
    available_methods: list[PaymentMethodResponse]
    enabled_methods: list[PaymentMethod]


class OrderStatusUpdateRequest(BaseModel):
    status: OrderStatus
    notes: str | None = Field(default=None, max_length=2000)


class StockUpdateRequest(BaseModel):
    quantity: int = Field(ge=1)
    operation: str = Field(default="increment", pattern="^(increment|decrement)$")
    variant_id: int | None = None


class JobQueuedResponse(BaseModel):
    job_id: int
    status: str
