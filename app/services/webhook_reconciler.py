"""Apply Mercado Pago payment notifications to orders.

Notifications are at-least-once and may arrive late, duplicated or out of
order. The body is only used to find the gateway payment id: the status is
always taken from a fresh ``get_payment`` call, and the order transition is
evaluated against the locked, freshly re-read row. Re-processing the same
notification leaves the order unchanged and adds no history.
"""

import logging
from typing import Any

from sqlalchemy.orm import Session

from app.errors import EntityNotFoundError, WebhookPayloadError
from app.models.database import utcnow
from app.models.enums import PaymentStatus
from app.models.events import OrderEvent, OrderEventKind
from app.models.order import HISTORY_DUPLICATE_PAYMENT, Order
from app.models.payment import Payment
from app.services import notification_service
from app.services.mercadopago_service import GatewayPayment, MercadoPagoClient
from app.services.order_lock import run_order_transition

logger = logging.getLogger(__name__)

OUTCOME_IGNORED = "ignored"
OUTCOME_PROCESSED = "processed"
OUTCOME_UNCHANGED = "unchanged"
OUTCOME_DUPLICATE = "duplicate"

# A settled payment never moves back to one of these on a stale snapshot.
_SETTLED = {PaymentStatus.PAID.value, PaymentStatus.REFUNDED.value}
_UNSETTLED = {PaymentStatus.PENDING, PaymentStatus.FAILED, PaymentStatus.CANCELLED}


def extract_payment_id(payload: Any) -> str | None:
    """Return the gateway payment id, or None for non-payment notifications.

    Supports both the webhook format (``type`` + ``data.id``) and the legacy
    IPN format (``topic`` + ``id``).
    """
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Notification body must be a JSON object")

    event_type = payload.get("type") or payload.get("topic")
    if not event_type:
        raise WebhookPayloadError("Notification has no type")
    if event_type != "payment":
        return None

    data = payload.get("data")
    payment_id = None
    if isinstance(data, dict):
        payment_id = data.get("id")
    elif "type" not in payload:
        payment_id = payload.get("id")

    payment_id = str(payment_id).strip() if payment_id is not None else ""
    if not payment_id:
        raise WebhookPayloadError("Notification has no payment id")
    return payment_id


def find_payment(db: Session, snapshot: GatewayPayment) -> Payment:
    payment = None
    reference = snapshot.external_reference
    if reference and reference.isdigit():
        payment = db.get(Payment, int(reference))
    if payment is None:
        payment = db.query(Payment).filter(Payment.external_id == snapshot.id).first()
    if payment is None:
        raise EntityNotFoundError("Payment", reference or snapshot.id)
    return payment


def _apply_snapshot(db: Session, order: Order, payment_id: int, snapshot: GatewayPayment):
    """Runs under the order lock. Returns (outcome, events)."""
    payment = db.get(Payment, payment_id, populate_existing=True)
    new_status = snapshot.internal_status
    payment.merge_gateway_data(snapshot.audit_data())

    if new_status == PaymentStatus.PAID:
        other_paid = next(
            (p for p in order.payments if p.id != payment.id and p.status == PaymentStatus.PAID.value),
            None,
        )
        if other_paid is not None:
            if (payment.gateway_data or {}).get("duplicate_of") is None:
                payment.merge_gateway_data({"duplicate_of": other_paid.id})
                order.add_history(
                    HISTORY_DUPLICATE_PAYMENT,
                    f"Gateway payment {snapshot.id} approved while payment {other_paid.id} is already paid. "
                    "Refund required.",
                )
                logger.warning(
                    "Duplicate payment %s (gateway %s) for order %s already paid by payment %s",
                    payment.id,
                    snapshot.id,
                    order.id,
                    other_paid.id,
                )
            return OUTCOME_DUPLICATE, []

    if payment.status in _SETTLED and new_status in _UNSETTLED:
        logger.info(
            "Ignoring stale %s snapshot for settled payment %s (%s)",
            snapshot.status,
            payment.id,
            payment.status,
        )
        return OUTCOME_UNCHANGED, []
    if payment.status == PaymentStatus.REFUNDED.value and new_status == PaymentStatus.PAID:
        return OUTCOME_UNCHANGED, []

    previous_status = payment.status
    payment.status = new_status.value
    payment.external_id = snapshot.id

    now = utcnow()
    if new_status == PaymentStatus.PAID:
        events = order.apply_payment_approved(now, snapshot.id)
    elif new_status == PaymentStatus.FAILED:
        events = order.mark_payment_failed(snapshot.status_detail or "Payment rejected")
    elif new_status == PaymentStatus.CANCELLED:
        events = order.mark_payment_failed("Payment cancelled at gateway")
    elif new_status == PaymentStatus.REFUNDED:
        events = order.mark_payment_refunded(snapshot.status_detail)
    else:
        events = []

    logger.info(
        "Payment %s for order %s: %s -> %s (gateway status %s)",
        payment.id,
        order.id,
        previous_status,
        payment.status,
        snapshot.status,
    )
    if any(event.kind == OrderEventKind.LATE_PAYMENT for event in events):
        logger.warning(
            "Late payment received for cancelled order %s (payment %s, gateway %s)",
            order.id,
            payment.id,
            snapshot.id,
        )
    return (OUTCOME_PROCESSED if events else OUTCOME_UNCHANGED), events


def reconcile_payment(db: Session, snapshot: GatewayPayment) -> str:
    """Bring the local Payment and its order in line with ``snapshot``."""
    payment = find_payment(db, snapshot)
    payment_id = payment.id
    order_id = payment.order_id

    outcome, events = run_order_transition(
        db,
        order_id,
        lambda order: _apply_snapshot(db, order, payment_id, snapshot),
    )
    notification_service.dispatch_after_commit(db, order_id, events)
    return outcome


def process_webhook(db: Session, payload: Any, client: MercadoPagoClient | None = None) -> str:
    """Handle one Mercado Pago notification and return what happened.

    Raises WebhookPayloadError for malformed bodies, EntityNotFoundError for
    unknown payments, GatewayError when the payment cannot be fetched and
    OrderLockedError when the order stays locked after retries.
    """
    payment_id = extract_payment_id(payload)
    if payment_id is None:
        logger.info(
            "Ignoring non-payment notification: type=%s action=%s",
            payload.get("type") or payload.get("topic"),
            payload.get("action"),
        )
        return OUTCOME_IGNORED

    logger.info("Processing Mercado Pago notification for payment %s (action=%s)", payment_id, payload.get("action"))
    client = client or MercadoPagoClient()
    snapshot = client.get_payment(payment_id)
    return reconcile_payment(db, snapshot)
