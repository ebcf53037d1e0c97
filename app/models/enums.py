from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def is_final(self) -> bool:
        return self in {OrderStatus.CANCELLED, OrderStatus.REFUNDED}


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class PaymentMethod(str, Enum):
    MERCADO_PAGO = "mercado_pago"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"


class UserRole(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class CouponType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


# Admin-driven fulfilment moves strictly forward along this chain.
FULFILMENT_TRANSITIONS: dict[OrderStatus, OrderStatus] = {
    OrderStatus.PROCESSING: OrderStatus.SHIPPED,
    OrderStatus.SHIPPED: OrderStatus.DELIVERED,
}

CANCELLABLE_STATUSES = {OrderStatus.PENDING, OrderStatus.PROCESSING}
REFUNDABLE_STATUSES = {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED}
