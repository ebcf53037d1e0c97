import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import AppError, EntityNotFoundError, WebhookPayloadError
from app.models import get_db
from app.services import webhook_reconciler
from app.services.mercadopago_service import validate_webhook_signature

router = APIRouter()
logger = logging.getLogger(__name__)


def _notification_data_id(request: Request, payload) -> str | None:
    data_id = request.query_params.get("data.id") or request.query_params.get("id")
    if data_id:
        return data_id
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, dict) and data.get("id") is not None:
            return str(data["id"])
    return None


def _verify_mercadopago_signature(request: Request, payload) -> None:
    """Validate x-signature when MERCADOPAGO_WEBHOOK_SECRET is configured."""
    if not settings.MERCADOPAGO_WEBHOOK_SECRET:
        logger.warning("MERCADOPAGO_WEBHOOK_SECRET is not set, skipping webhook verification")
        return

    valid = validate_webhook_signature(
        request.headers.get("x-signature"),
        request.headers.get("x-request-id"),
        _notification_data_id(request, payload),
        settings.MERCADOPAGO_WEBHOOK_SECRET,
    )
    if not valid:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")


@router.post(
    "/mercadopago",
    summary="Mercado Pago webhook",
)
async def mercadopago_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Mercado Pago sends payment notifications here. The payment is re-fetched
    from the API and the order updated accordingly. Safe to receive the same
    notification more than once.

    Answers 503 when the gateway or the order is temporarily unavailable so
    Mercado Pago redelivers; anything else is acknowledged with 200.
    """
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body) if raw_body else {}
    except ValueError:
        payload = None

    _verify_mercadopago_signature(request, payload)

    if not payload and request.query_params.get("topic"):
        # Legacy IPN delivers everything in the query string.
        payload = dict(request.query_params)

    try:
        # gateway fetch, backoff sleeps and lock retries all block
        outcome = await run_in_threadpool(webhook_reconciler.process_webhook, db, payload)
    except (WebhookPayloadError, EntityNotFoundError) as exc:
        logger.warning("Mercado Pago notification not processed: %s", exc.message)
        return {"received": True, "status": "ignored"}
    except AppError as exc:
        if exc.retryable:
            logger.warning("Mercado Pago notification deferred: %s (%s)", exc.message, exc.error_code)
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"received": False, "error": exc.error_code},
            )
        logger.error("Mercado Pago notification failed: %s (%s)", exc.message, exc.error_code)
        return {"received": True, "status": "failed"}

    return {"received": True, "status": outcome}
