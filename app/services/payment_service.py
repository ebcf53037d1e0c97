import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.config import settings
from app.errors import EntityNotFoundError, GatewayError, InvalidOperationError, PaymentFailedError
from app.models.enums import PaymentMethod, PaymentStatus
from app.models.order import Order
from app.models.payment import Payment
from app.models.user import User
from app.services.mercadopago_service import (
    MercadoPagoClient,
    Payer,
    PaymentPreferenceRequest,
    PreferenceItem,
)
from app.services.money import to_money
from app.services.order_lock import run_order_transition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentPreference:
    payment_id: int
    preference_id: str
    redirect_url: str | None


def get_client() -> MercadoPagoClient:
    return MercadoPagoClient()


def build_preference_request(order: Order, payment_id: int, payer: Payer) -> PaymentPreferenceRequest:
    items = [
        PreferenceItem(
            id=str(item.product_id),
            title=item.name,
            quantity=item.quantity,
            unit_price=to_money(item.unit_price),
            currency_id=order.currency,
        )
        for item in order.items
    ]
    return PaymentPreferenceRequest(
        items=items,
        payer=payer,
        back_urls={
            "success": settings.MERCADOPAGO_SUCCESS_URL,
            "failure": settings.MERCADOPAGO_FAILURE_URL,
            "pending": settings.MERCADOPAGO_PENDING_URL,
        },
        external_reference=str(payment_id),
        notification_url=settings.MERCADOPAGO_NOTIFICATION_URL or None,
        statement_descriptor=settings.APP_NAME,
    )


def resolve_payer(order: Order, user: User | None) -> Payer:
    if user is not None:
        return Payer(name=user.display_name or order.shipping_name, email=user.email)
    return Payer(name=order.shipping_name or "", email=order.shipping_email or "")


def _find_order_for_payment(db: Session, order_id: int, user: User | None) -> Order:
    query = db.query(Order).filter(Order.id == order_id)
    if user is not None:
        query = query.filter(Order.user_id == user.id)
    else:
        query = query.filter(Order.user_id.is_(None))
    order = query.first()
    if order is None:
        raise EntityNotFoundError("Order", order_id)
    return order


def create_payment_preference(
    db: Session,
    order_id: int,
    user: User | None = None,
    client: MercadoPagoClient | None = None,
) -> PaymentPreference:
    """Open a new Mercado Pago payment attempt for an order.

    The Payment row is created under the order lock; the gateway call runs
    after that transaction commits so no lock is held during network I/O.
    """
    order = _find_order_for_payment(db, order_id, user)
    if order.payment_method != PaymentMethod.MERCADO_PAGO.value:
        raise InvalidOperationError(
            "This order is not paid online",
            "PAYMENT_METHOD_OFFLINE",
            {"payment_method": order.payment_method},
        )
    payer = resolve_payer(order, user)

    def open_attempt(locked: Order):
        locked.reopen_payment()
        payment = Payment(
            order_id=locked.id,
            gateway=PaymentMethod.MERCADO_PAGO.value,
            status=PaymentStatus.PENDING.value,
            amount=locked.total,
            currency=locked.currency,
        )
        db.add(payment)
        db.flush()
        # Validate before anything leaves the process; a failure rolls the attempt back.
        return payment.id, build_preference_request(locked, payment.id, payer)

    payment_id, preference_request = run_order_transition(db, order_id, open_attempt)

    client = client or get_client()
    try:
        result = client.create_preference(preference_request)
    except GatewayError as exc:
        payment = db.get(Payment, payment_id)
        payment.status = PaymentStatus.FAILED.value
        payment.merge_gateway_data({"error": exc.error_code, "status_code": exc.status_code})
        db.commit()
        logger.error(
            "Failed to create payment preference for order %s (payment %s): %s",
            order_id,
            payment_id,
            exc.message,
        )
        raise PaymentFailedError(
            reason=exc.error_code,
            metadata={"order_id": order_id, "payment_id": payment_id},
            retryable=exc.retryable,
        ) from exc

    payment = db.get(Payment, payment_id)
    payment.external_id = result.preference_id
    payment.merge_gateway_data({"preference_id": result.preference_id})
    db.commit()
    logger.info(
        "Payment preference created: order=%s payment=%s preference=%s",
        order_id,
        payment_id,
        result.preference_id,
    )
    return PaymentPreference(
        payment_id=payment_id,
        preference_id=result.preference_id,
        redirect_url=result.redirect_url(settings.MERCADOPAGO_SANDBOX),
    )
