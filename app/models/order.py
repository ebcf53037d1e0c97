import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import composite, relationship

from app.errors import InvalidOperationError
from app.models.database import Base, as_utc, utcnow
from app.models.enums import (
    CANCELLABLE_STATUSES,
    FULFILMENT_TRANSITIONS,
    REFUNDABLE_STATUSES,
    OrderStatus,
    PaymentStatus,
)
from app.models.events import OrderEvent, OrderEventKind

HISTORY_ORDER_CREATED = "Order created"
HISTORY_PAYMENT_CONFIRMED = "Payment confirmed"
HISTORY_LATE_PAYMENT = "Late payment received"
HISTORY_PAYMENT_FAILED = "Payment failed"
HISTORY_PAYMENT_REFUNDED = "Payment refunded"
HISTORY_PAYMENT_RETRIED = "Payment retried"
HISTORY_DUPLICATE_PAYMENT = "Duplicate payment received"
HISTORY_EXPIRED = "Cancelled: payment not received"


@dataclass
class Address:
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    address_line_2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None


def generate_order_number(now: datetime | None = None) -> str:
    now = now or utcnow()
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(4))
    return f"ORD-{now:%y%m%d}-{suffix}"


class Order(Base):
    """Order aggregate.

    ``status`` and ``payment_status`` are only ever written by the transition
    methods below. Callers must hold the row lock (see
    ``app.services.order_lock``) and commit once per transition.
    """

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(32), unique=True, index=True, nullable=False, default=generate_order_number)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    status = Column(String(32), nullable=False, default=OrderStatus.PENDING.value, index=True)
    payment_status = Column(String(32), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    payment_method = Column(String(32), nullable=False)
    currency = Column(String(3), nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False)
    shipping_cost = Column(Numeric(12, 2), nullable=False)
    tax = Column(Numeric(12, 2), nullable=False)
    discount = Column(Numeric(12, 2), nullable=False)
    total = Column(Numeric(12, 2), nullable=False)
    notes = Column(Text, nullable=True)

    shipping_name = Column(String(255), nullable=False)
    shipping_email = Column(String(255), nullable=True)
    shipping_phone = Column(String(64), nullable=True)
    shipping_address_line = Column(String(255), nullable=False)
    shipping_address_line_2 = Column(String(255), nullable=True)
    shipping_city = Column(String(128), nullable=False)
    shipping_state = Column(String(128), nullable=True)
    shipping_postal_code = Column(String(32), nullable=False)
    shipping_country = Column(String(2), nullable=False)
    shipping_address = composite(
        Address,
        shipping_name,
        shipping_email,
        shipping_phone,
        shipping_address_line,
        shipping_address_line_2,
        shipping_city,
        shipping_state,
        shipping_postal_code,
        shipping_country,
    )

    billing_name = Column(String(255), nullable=False)
    billing_email = Column(String(255), nullable=True)
    billing_phone = Column(String(64), nullable=True)
    billing_address_line = Column(String(255), nullable=False)
    billing_address_line_2 = Column(String(255), nullable=True)
    billing_city = Column(String(128), nullable=False)
    billing_state = Column(String(128), nullable=True)
    billing_postal_code = Column(String(32), nullable=False)
    billing_country = Column(String(2), nullable=False)
    billing_address = composite(
        Address,
        billing_name,
        billing_email,
        billing_phone,
        billing_address_line,
        billing_address_line_2,
        billing_city,
        billing_state,
        billing_postal_code,
        billing_country,
    )

    paid_at = Column(DateTime(timezone=True), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    stock_released_at = Column(DateTime(timezone=True), nullable=True)
    reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    version_id = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    user = relationship("User")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy="selectin",
    )
    history = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.id",
        lazy="selectin",
    )
    payments = relationship("Payment", back_populates="order", order_by="Payment.id", lazy="selectin")

    @property
    def status_enum(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def payment_status_enum(self) -> PaymentStatus:
        return PaymentStatus(self.payment_status)

    @property
    def contact_email(self) -> str | None:
        if self.user is not None:
            return self.user.email
        return self.shipping_email

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def is_pending_unpaid(self) -> bool:
        return self.status == OrderStatus.PENDING.value and self.payment_status == PaymentStatus.PENDING.value

    def is_older_than(self, hours: int, now: datetime) -> bool:
        return as_utc(self.created_at) <= now - timedelta(hours=hours)

    def add_history(self, status: str, notes: str | None = None, changed_by: int | None = None) -> None:
        self.history.append(OrderStatusHistory(status=status, notes=notes, changed_by=changed_by))

    def _set_status(self, new_status: OrderStatus) -> OrderEvent:
        previous = self.status
        self.status = new_status.value
        return OrderEvent(
            OrderEventKind.STATUS_CHANGED,
            self.id,
            previous_status=previous,
            new_status=new_status.value,
        )

    # Payment-driven transitions. These never raise on a stale or duplicate
    # notification; they return no events instead.

    def apply_payment_approved(self, now: datetime, transaction_id: str | None = None) -> list[OrderEvent]:
        if self.payment_status in {PaymentStatus.PAID.value, PaymentStatus.REFUNDED.value}:
            return []

        self.payment_status = PaymentStatus.PAID.value
        if self.paid_at is None:
            self.paid_at = now

        if self.status == OrderStatus.CANCELLED.value:
            self.add_history(
                HISTORY_LATE_PAYMENT,
                "Payment approved after order cancellation. Manual review required.",
            )
            return [OrderEvent(OrderEventKind.LATE_PAYMENT, self.id, transaction_id=transaction_id)]

        self.add_history(HISTORY_PAYMENT_CONFIRMED, transaction_id)
        events = [OrderEvent(OrderEventKind.PAID, self.id, transaction_id=transaction_id)]
        if self.status == OrderStatus.PENDING.value:
            events.append(self._set_status(OrderStatus.PROCESSING))
            self.add_history(OrderStatus.PROCESSING.label)
        return events

    def mark_payment_failed(self, reason: str | None = None) -> list[OrderEvent]:
        if self.payment_status != PaymentStatus.PENDING.value:
            return []
        self.payment_status = PaymentStatus.FAILED.value
        self.add_history(HISTORY_PAYMENT_FAILED, reason)
        return [OrderEvent(OrderEventKind.PAYMENT_FAILED, self.id)]

    def mark_payment_refunded(self, reason: str | None = None) -> list[OrderEvent]:
        if self.payment_status != PaymentStatus.PAID.value:
            return []
        self.payment_status = PaymentStatus.REFUNDED.value
        self.add_history(HISTORY_PAYMENT_REFUNDED, reason)
        return [OrderEvent(OrderEventKind.PAYMENT_REFUNDED, self.id)]

    def reopen_payment(self) -> list[OrderEvent]:
        """Put a failed payment back to pending for a new attempt."""
        if self.status != OrderStatus.PENDING.value or self.payment_status not in {
            PaymentStatus.PENDING.value,
            PaymentStatus.FAILED.value,
        }:
            raise InvalidOperationError(
                f"This order cannot be paid. Current status: {self.payment_status_enum.label}",
                "ORDER_ALREADY_PROCESSED",
                {"status": self.status, "payment_status": self.payment_status},
            )
        if self.payment_status == PaymentStatus.FAILED.value:
            self.payment_status = PaymentStatus.PENDING.value
            self.add_history(HISTORY_PAYMENT_RETRIED)
        return []

    def expire(self, now: datetime, expiration_hours: int) -> list[OrderEvent]:
        """Cancel an unpaid order past its deadline.

        The caller releases stock in the same transaction.
        """
        if not self.is_pending_unpaid() or not self.is_older_than(expiration_hours, now):
            return []
        self.payment_status = PaymentStatus.CANCELLED.value
        self.cancelled_at = now
        event = self._set_status(OrderStatus.CANCELLED)
        self.add_history(HISTORY_EXPIRED, f"Unpaid for more than {expiration_hours}h")
        return [event, OrderEvent(OrderEventKind.PAYMENT_EXPIRED, self.id)]

    # Caller-driven transitions. Invalid requests raise InvalidOperationError.

    def cancel(self, now: datetime, notes: str | None = None, changed_by: int | None = None) -> list[OrderEvent]:
        if self.status_enum not in CANCELLABLE_STATUSES:
            raise InvalidOperationError(
                "This order cannot be cancelled",
                "ORDER_CANNOT_BE_CANCELLED",
                {"status": self.status},
            )
        if self.payment_status == PaymentStatus.PENDING.value:
            self.payment_status = PaymentStatus.CANCELLED.value
        self.cancelled_at = now
        event = self._set_status(OrderStatus.CANCELLED)
        self.add_history(OrderStatus.CANCELLED.label, notes, changed_by)
        return [event]

    def advance_fulfilment(
        self,
        new_status: OrderStatus,
        now: datetime,
        notes: str | None = None,
        changed_by: int | None = None,
    ) -> list[OrderEvent]:
        if self.payment_status != PaymentStatus.PAID.value:
            raise InvalidOperationError(
                "Only paid orders can be fulfilled",
                "ORDER_NOT_PAID",
                {"payment_status": self.payment_status},
            )
        if FULFILMENT_TRANSITIONS.get(self.status_enum) != new_status:
            raise InvalidOperationError(
                f"Cannot change order status from {self.status} to {new_status.value}",
                "INVALID_STATUS_TRANSITION",
                {"from": self.status, "to": new_status.value},
            )
        if new_status == OrderStatus.SHIPPED:
            self.shipped_at = now
        elif new_status == OrderStatus.DELIVERED:
            self.delivered_at = now
        event = self._set_status(new_status)
        self.add_history(new_status.label, notes, changed_by)
        return [event]

    def refund(self, notes: str | None = None, changed_by: int | None = None) -> list[OrderEvent]:
        if self.status_enum not in REFUNDABLE_STATUSES or self.payment_status != PaymentStatus.PAID.value:
            raise InvalidOperationError(
                "Only paid orders can be refunded",
                "ORDER_CANNOT_BE_REFUNDED",
                {"status": self.status, "payment_status": self.payment_status},
            )
        self.payment_status = PaymentStatus.REFUNDED.value
        event = self._set_status(OrderStatus.REFUNDED)
        self.add_history(OrderStatus.REFUNDED.label, notes, changed_by)
        return [event]


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=True)
    name = Column(String(255), nullable=False)
    sku = Column(String(64), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    total = Column(Numeric(12, 2), nullable=False)
    options = Column(JSON, nullable=True)
    stock_reserved = Column(Boolean, nullable=False, default=False)

    order = relationship("Order", back_populates="items")


class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    status = Column(String(64), nullable=False)
    notes = Column(Text, nullable=True)
    changed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    order = relationship("Order", back_populates="history")
