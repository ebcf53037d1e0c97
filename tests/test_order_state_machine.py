from datetime import timedelta

import pytest

from app.errors import InvalidOperationError
from app.models.database import utcnow
from app.models.enums import OrderStatus, PaymentStatus
from app.models.events import OrderEventKind
from app.models.order import HISTORY_EXPIRED, HISTORY_LATE_PAYMENT


@pytest.fixture
def order(make_order, product):
    return make_order([(product, 1)])


def _kinds(events):
    return [event.kind for event in events]


def test_payment_approved_moves_pending_order_to_processing(order):
    events = order.apply_payment_approved(utcnow(), "9001")

    assert order.status == OrderStatus.PROCESSING.value
    assert order.payment_status == PaymentStatus.PAID.value
    assert order.paid_at is not None
    assert _kinds(events) == [OrderEventKind.PAID, OrderEventKind.STATUS_CHANGED]


def test_payment_approved_twice_is_a_no_op(order):
    order.apply_payment_approved(utcnow())
    history_len = len(order.history)

    assert order.apply_payment_approved(utcnow()) == []
    assert len(order.history) == history_len


def test_payment_approved_after_cancellation_is_a_late_payment(order):
    order.cancel(utcnow(), "Changed my mind")

    events = order.apply_payment_approved(utcnow(), "9001")

    assert order.status == OrderStatus.CANCELLED.value
    assert order.payment_status == PaymentStatus.PAID.value
    assert _kinds(events) == [OrderEventKind.LATE_PAYMENT]
    assert order.history[-1].status == HISTORY_LATE_PAYMENT


def test_payment_failure_only_from_pending(order):
    assert _kinds(order.mark_payment_failed("cc_rejected")) == [OrderEventKind.PAYMENT_FAILED]
    assert order.payment_status == PaymentStatus.FAILED.value
    assert order.status == OrderStatus.PENDING.value
    assert order.mark_payment_failed("again") == []


def test_failed_payment_can_be_reopened(order):
    order.mark_payment_failed()
    order.reopen_payment()
    assert order.payment_status == PaymentStatus.PENDING.value


def test_paid_order_cannot_be_reopened(order):
    order.apply_payment_approved(utcnow())
    with pytest.raises(InvalidOperationError) as exc_info:
        order.reopen_payment()
    assert exc_info.value.error_code == "ORDER_ALREADY_PROCESSED"


def test_expire_requires_age_and_pending_payment(order):
    now = utcnow()
    assert order.expire(now, 24) == []
    assert order.status == OrderStatus.PENDING.value

    events = order.expire(now + timedelta(hours=25), 24)

    assert _kinds(events) == [OrderEventKind.STATUS_CHANGED, OrderEventKind.PAYMENT_EXPIRED]
    assert order.status == OrderStatus.CANCELLED.value
    assert order.payment_status == PaymentStatus.CANCELLED.value
    assert order.history[-1].status == HISTORY_EXPIRED


def test_expire_leaves_paid_orders_alone(order):
    order.apply_payment_approved(utcnow())
    assert order.expire(utcnow() + timedelta(days=3), 24) == []
    assert order.status == OrderStatus.PROCESSING.value


def test_fulfilment_moves_forward_only(order):
    now = utcnow()
    with pytest.raises(InvalidOperationError) as exc_info:
        order.advance_fulfilment(OrderStatus.SHIPPED, now)
    assert exc_info.value.error_code == "ORDER_NOT_PAID"

    order.apply_payment_approved(now)
    with pytest.raises(InvalidOperationError) as exc_info:
        order.advance_fulfilment(OrderStatus.DELIVERED, now)
    assert exc_info.value.error_code == "INVALID_STATUS_TRANSITION"

    order.advance_fulfilment(OrderStatus.SHIPPED, now)
    order.advance_fulfilment(OrderStatus.DELIVERED, now)
    assert order.status == OrderStatus.DELIVERED.value
    assert order.shipped_at is not None and order.delivered_at is not None


def test_cancel_rules(order):
    order.apply_payment_approved(utcnow())
    order.advance_fulfilment(OrderStatus.SHIPPED, utcnow())
    with pytest.raises(InvalidOperationError) as exc_info:
        order.cancel(utcnow())
    assert exc_info.value.error_code == "ORDER_CANNOT_BE_CANCELLED"


def test_cancel_pending_order_cancels_payment(order):
    events = order.cancel(utcnow(), "Cancelled by customer")
    assert order.payment_status == PaymentStatus.CANCELLED.value
    assert events[0].previous_status == OrderStatus.PENDING.value
    assert events[0].new_status == OrderStatus.CANCELLED.value


def test_refund_requires_paid_order(order):
    with pytest.raises(InvalidOperationError):
        order.refund()

    order.apply_payment_approved(utcnow())
    order.refund("Damaged in transit")

    assert order.status == OrderStatus.REFUNDED.value
    assert order.payment_status == PaymentStatus.REFUNDED.value
    assert order.mark_payment_refunded() == []
