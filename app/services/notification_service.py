"""Turn committed order events into queued emails and broadcasts.

``dispatch`` only writes jobs; delivery happens in the worker so a slow or
failing mail server never touches the order transaction.
"""

import logging

from sqlalchemy.orm import Session

from app.config import settings
from app.models.database import utcnow
from app.models.events import OrderEvent, OrderEventKind
from app.models.order import Order
from app.services import broadcast_service, email_service, job_queue
from app.services.order_lock import run_order_transition

logger = logging.getLogger(__name__)

SEND_ORDER_CONFIRMATION = "send_order_confirmation"
SEND_ORDER_PAID = "send_order_paid"
SEND_ORDER_STATUS_CHANGED = "send_order_status_changed"
SEND_PENDING_PAYMENT_REMINDER = "send_pending_payment_reminder"
SEND_ORDER_PAYMENT_EXPIRED = "send_order_payment_expired"
SEND_LATE_PAYMENT_ALERT = "send_late_payment_alert"

# Events that already send their own email; the accompanying status change
# is then broadcast only.
_EMAILED_KINDS = {OrderEventKind.PAID, OrderEventKind.PAYMENT_EXPIRED}


def reminder_dedupe_key(order_id: int) -> str:
    return f"{SEND_PENDING_PAYMENT_REMINDER}:{order_id}"


def dispatch(db: Session, order_id: int, events: list[OrderEvent]) -> list:
    """Queue the jobs for ``events``. Call only after the transition committed."""
    kinds = {event.kind for event in events}
    jobs = []
    for event in events:
        if event.kind == OrderEventKind.CREATED:
            jobs.append(
                job_queue.enqueue(
                    db,
                    SEND_ORDER_CONFIRMATION,
                    {"order_id": order_id},
                    dedupe_key=f"{SEND_ORDER_CONFIRMATION}:{order_id}",
                )
            )
        elif event.kind == OrderEventKind.PAID:
            jobs.append(
                job_queue.enqueue(
                    db,
                    SEND_ORDER_PAID,
                    {"order_id": order_id, "transaction_id": event.transaction_id},
                    dedupe_key=f"{SEND_ORDER_PAID}:{order_id}",
                )
            )
        elif event.kind == OrderEventKind.STATUS_CHANGED:
            jobs.append(
                job_queue.enqueue(
                    db,
                    SEND_ORDER_STATUS_CHANGED,
                    {
                        "order_id": order_id,
                        "previous_status": event.previous_status,
                        "new_status": event.new_status,
                        "email": not (kinds & _EMAILED_KINDS),
                    },
                    dedupe_key=f"{SEND_ORDER_STATUS_CHANGED}:{order_id}:{event.new_status}",
                )
            )
        elif event.kind == OrderEventKind.PAYMENT_EXPIRED:
            jobs.append(
                job_queue.enqueue(
                    db,
                    SEND_ORDER_PAYMENT_EXPIRED,
                    {"order_id": order_id},
                    dedupe_key=f"{SEND_ORDER_PAYMENT_EXPIRED}:{order_id}",
                )
            )
        elif event.kind == OrderEventKind.PENDING_REMINDER:
            jobs.append(schedule_pending_reminder(db, order_id))
        elif event.kind == OrderEventKind.LATE_PAYMENT:
            jobs.append(
                job_queue.enqueue(
                    db,
                    SEND_LATE_PAYMENT_ALERT,
                    {"order_id": order_id, "transaction_id": event.transaction_id},
                    dedupe_key=f"{SEND_LATE_PAYMENT_ALERT}:{order_id}",
                )
            )
        else:
            logger.debug("No notification for %s on order %s", event.kind.value, order_id)
    return jobs


def dispatch_after_commit(db: Session, order_id: int, events: list[OrderEvent]) -> None:
    """Queue notifications for a committed transition without ever failing it."""
    if not events:
        return
    try:
        dispatch(db, order_id, events)
    except Exception:
        db.rollback()
        logger.exception("Failed to queue notifications for order %s", order_id)


def schedule_pending_reminder(db: Session, order_id: int, delay_seconds: int = 0):
    return job_queue.enqueue(
        db,
        SEND_PENDING_PAYMENT_REMINDER,
        {"order_id": order_id},
        delay_seconds=delay_seconds,
        dedupe_key=reminder_dedupe_key(order_id),
    )


def _load_order(db: Session, order_id: int) -> Order | None:
    order = db.get(Order, order_id, populate_existing=True)
    if order is None:
        logger.warning("Order %s no longer exists, skipping notification", order_id)
    return order


def _email(order: Order, send, *args) -> bool:
    if not order.contact_email:
        logger.warning("Order %s has no contact email, skipping %s", order.id, send.__name__)
        return False
    if not email_service.is_configured():
        logger.warning("SMTP is not configured, skipping %s for order %s", send.__name__, order.id)
        return False
    send(order, *args)
    return True


@job_queue.job_handler(SEND_ORDER_CONFIRMATION)
def handle_order_confirmation(db: Session, payload: dict) -> None:
    order = _load_order(db, payload["order_id"])
    if order is not None:
        _email(order, email_service.send_order_confirmation)


@job_queue.job_handler(SEND_ORDER_PAID)
def handle_order_paid(db: Session, payload: dict) -> None:
    order = _load_order(db, payload["order_id"])
    if order is not None:
        _email(order, email_service.send_order_paid)


@job_queue.job_handler(SEND_ORDER_STATUS_CHANGED)
def handle_order_status_changed(db: Session, payload: dict) -> None:
    order = _load_order(db, payload["order_id"])
    if order is None:
        return
    new_status = payload.get("new_status")
    broadcast_service.broadcast(
        broadcast_service.order_channels(order.user_id),
        "OrderStatusChanged",
        {
            "order_id": order.id,
            "order_number": order.order_number,
            "previous_status": payload.get("previous_status"),
            "status": new_status,
            "payment_status": order.payment_status,
        },
    )
    if payload.get("email", True):
        _email(order, email_service.send_order_status_changed, new_status)


@job_queue.job_handler(SEND_ORDER_PAYMENT_EXPIRED)
def handle_order_payment_expired(db: Session, payload: dict) -> None:
    order = _load_order(db, payload["order_id"])
    if order is not None:
        _email(order, email_service.send_order_payment_expired)


@job_queue.job_handler(SEND_LATE_PAYMENT_ALERT)
def handle_late_payment_alert(db: Session, payload: dict) -> None:
    order = _load_order(db, payload["order_id"])
    if order is None:
        return
    broadcast_service.broadcast(
        [broadcast_service.ADMIN_CHANNEL],
        "LatePaymentReceived",
        {
            "order_id": order.id,
            "order_number": order.order_number,
            "transaction_id": payload.get("transaction_id"),
        },
    )


@job_queue.job_handler(SEND_PENDING_PAYMENT_REMINDER)
def handle_pending_payment_reminder(db: Session, payload: dict) -> None:
    """Remind the buyer once, and only while the order is still pending/pending."""
    order_id = payload["order_id"]
    order = _load_order(db, order_id)
    if order is None or not order.is_pending_unpaid() or order.reminder_sent_at is not None:
        db.rollback()
        return

    if not _email(order, email_service.send_pending_payment_reminder):
        db.rollback()
        logger.info("Pending payment reminder for order %s was not sent", order_id)
        return

    def mark_sent(locked: Order) -> None:
        if locked.reminder_sent_at is None:
            locked.reminder_sent_at = utcnow()

    run_order_transition(db, order_id, mark_sent)
    logger.info("Pending payment reminder sent for order %s", order_id)


def pending_reminder_delay_seconds() -> int:
    return settings.CHECKOUT_PENDING_PAYMENT_REMINDER_HOURS * 3600
