from dataclasses import dataclass
from enum import Enum


class OrderEventKind(str, Enum):
    CREATED = "created"
    PAID = "paid"
    LATE_PAYMENT = "late_payment"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_REFUNDED = "payment_refunded"
    STATUS_CHANGED = "status_changed"
    PAYMENT_EXPIRED = "payment_expired"
    PENDING_REMINDER = "pending_reminder"


@dataclass(frozen=True)
class OrderEvent:
    """Something that happened to an order, produced by a committed transition."""

    kind: OrderEventKind
    order_id: int
    previous_status: str | None = None
    new_status: str | None = None
    transaction_id: str | None = None
