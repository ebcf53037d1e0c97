"""Cancel unpaid orders past their deadline and remind buyers before that.

Candidates are selected without locks; each order is then re-checked and
expired in its own locked transaction, so a payment that lands between the
query and the lock wins and the order is left alone.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.config import settings
from app.models.database import utcnow
from app.models.enums import OrderStatus, PaymentStatus
from app.models.events import OrderEvent
from app.models.order import Order
from app.services import notification_service, stock_service
from app.services.order_lock import run_order_transition

logger = logging.getLogger(__name__)


def _pending_unpaid(db: Session, cutoff: datetime):
    return (
        db.query(Order.id)
        .filter(
            Order.status == OrderStatus.PENDING.value,
            Order.payment_status == PaymentStatus.PENDING.value,
            Order.created_at <= cutoff,
        )
        .order_by(Order.id)
    )


def find_expirable_order_ids(db: Session, cutoff: datetime) -> list[int]:
    return [order_id for (order_id,) in _pending_unpaid(db, cutoff).all()]


def expire_order(db: Session, order_id: int, expiration_hours: int, now: datetime | None = None) -> list[OrderEvent]:
    """Expire one order if it is still pending/pending and old enough."""
    now = now or utcnow()

    def transition(order: Order) -> list[OrderEvent]:
        events = order.expire(now, expiration_hours)
        if events:
            stock_service.release(db, order, now)
        return events

    events = run_order_transition(db, order_id, transition)
    if events:
        logger.info("Order %s cancelled: unpaid for more than %sh", order_id, expiration_hours)
    else:
        logger.info("Order %s no longer expirable, skipped", order_id)
    return events


def expire_overdue_unpaid_orders(
    db: Session,
    expiration_hours: int | None = None,
    now: datetime | None = None,
) -> int:
    """Cancel every overdue pending/pending order. Returns how many were cancelled."""
    hours = expiration_hours if expiration_hours is not None else settings.CHECKOUT_PENDING_PAYMENT_EXPIRATION_HOURS
    now = now or utcnow()
    cutoff = now - timedelta(hours=hours)

    expired = 0
    for order_id in find_expirable_order_ids(db, cutoff):
        try:
            events = expire_order(db, order_id, hours, now)
        except Exception:
            db.rollback()
            logger.exception("Failed to expire order %s", order_id)
            continue
        if events:
            expired += 1
            notification_service.dispatch_after_commit(db, order_id, events)

    if expired:
        logger.info("Expired %s unpaid orders older than %sh", expired, hours)
    return expired


def send_pending_payment_reminders(
    db: Session,
    reminder_hours: int | None = None,
    now: datetime | None = None,
) -> int:
    """Queue a reminder for unpaid orders past the reminder threshold.

    The reminder job is deduplicated per order and re-checks the order when
    it runs, so queueing here is safe even if checkout already did.
    """
    hours = reminder_hours if reminder_hours is not None else settings.CHECKOUT_PENDING_PAYMENT_REMINDER_HOURS
    now = now or utcnow()
    cutoff = now - timedelta(hours=hours)

    order_ids = [
        order_id
        for (order_id,) in _pending_unpaid(db, cutoff).filter(Order.reminder_sent_at.is_(None)).all()
    ]
    queued = 0
    for order_id in order_ids:
        try:
            notification_service.schedule_pending_reminder(db, order_id)
        except Exception:
            db.rollback()
            logger.exception("Failed to queue payment reminder for order %s", order_id)
            continue
        queued += 1
    return queued
