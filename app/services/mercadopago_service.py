"""Mercado Pago REST client.

Only the calls the checkout needs: create a preference and fetch a payment.
Outbound requests carry a bounded timeout and are retried with exponential
backoff on 5xx/429 responses and network failures. Other 4xx responses fail
immediately.
"""

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import requests
from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.config import settings
from app.errors import (
    GatewayError,
    GatewayRequestError,
    GatewayTimeoutError,
    GatewayUnavailableError,
    ValidationError,
)
from app.models.enums import PaymentStatus

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

STATUS_MAP = {
    "approved": PaymentStatus.PAID,
    "authorized": PaymentStatus.PAID,
    "pending": PaymentStatus.PENDING,
    "in_process": PaymentStatus.PENDING,
    "in_mediation": PaymentStatus.PENDING,
    "rejected": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.CANCELLED,
    "refunded": PaymentStatus.REFUNDED,
    "charged_back": PaymentStatus.REFUNDED,
}

_email_adapter = TypeAdapter(EmailStr)


def map_status(gateway_status: str | None) -> PaymentStatus:
    """Map a Mercado Pago payment status onto the internal vocabulary.

    Unknown statuses are treated as failed, never passed through.
    """
    status = STATUS_MAP.get((gateway_status or "").strip().lower())
    if status is None:
        logger.warning("Unknown Mercado Pago payment status %r, treating as failed", gateway_status)
        return PaymentStatus.FAILED
    return status


@dataclass(frozen=True)
class PreferenceItem:
    id: str
    title: str
    quantity: int
    unit_price: Decimal
    currency_id: str
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description or self.title,
            "quantity": self.quantity,
            "unit_price": float(self.unit_price),
            "currency_id": self.currency_id,
        }


@dataclass(frozen=True)
class Payer:
    name: str
    email: str


@dataclass(frozen=True)
class PaymentPreferenceRequest:
    items: list[PreferenceItem]
    payer: Payer
    back_urls: dict[str, str]
    external_reference: str
    notification_url: str | None = None
    statement_descriptor: str | None = None
    auto_return: str = "approved"

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        errors: dict[str, list[str]] = {}
        if not self.items:
            errors.setdefault("items", []).append("Items cannot be empty")
        for index, item in enumerate(self.items):
            if not item.id or not item.title or not item.currency_id:
                errors.setdefault(f"items.{index}", []).append("Invalid item structure")
            if item.quantity <= 0:
                errors.setdefault(f"items.{index}.quantity", []).append("Item quantity must be greater than 0")
            if item.unit_price <= 0:
                errors.setdefault(f"items.{index}.unit_price", []).append("Item unit price must be greater than 0")
        if not self.payer.name or not self.payer.email:
            errors.setdefault("payer", []).append("Payer name and email are required")
        else:
            try:
                _email_adapter.validate_python(self.payer.email)
            except PydanticValidationError:
                errors.setdefault("payer.email", []).append("Invalid payer email")
        for key in ("success", "failure", "pending"):
            if not self.back_urls.get(key):
                errors.setdefault("back_urls", []).append(
                    "All back URLs (success, failure, pending) are required"
                )
                break
        if not self.external_reference:
            errors.setdefault("external_reference", []).append("External reference is required")
        if errors:
            raise ValidationError("Invalid payment preference", errors)

    def to_dict(self) -> dict[str, Any]:
        body = {
            "items": [item.to_dict() for item in self.items],
            "payer": {"name": self.payer.name, "email": self.payer.email},
            "back_urls": dict(self.back_urls),
            "auto_return": self.auto_return,
            "external_reference": self.external_reference,
            "notification_url": self.notification_url,
            "statement_descriptor": self.statement_descriptor,
        }
        return {key: value for key, value in body.items() if value is not None}


@dataclass(frozen=True)
class PreferenceResult:
    preference_id: str
    init_point: str | None
    sandbox_init_point: str | None

    def redirect_url(self, sandbox: bool) -> str | None:
        if sandbox:
            return self.sandbox_init_point or self.init_point
        return self.init_point or self.sandbox_init_point


@dataclass(frozen=True)
class GatewayPayment:
    """Authoritative snapshot of a payment as reported by the gateway."""

    id: str
    status: str
    status_detail: str | None = None
    external_reference: str | None = None
    transaction_amount: Decimal | None = None
    currency_id: str | None = None
    date_approved: str | None = None
    payment_method_id: str | None = None
    payment_type_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "GatewayPayment":
        amount = data.get("transaction_amount")
        reference = data.get("external_reference")
        return cls(
            id=str(data.get("id")),
            status=str(data.get("status") or ""),
            status_detail=data.get("status_detail"),
            external_reference=str(reference) if reference not in (None, "") else None,
            transaction_amount=Decimal(str(amount)) if amount is not None else None,
            currency_id=data.get("currency_id"),
            date_approved=data.get("date_approved"),
            payment_method_id=data.get("payment_method_id"),
            payment_type_id=data.get("payment_type_id"),
            raw=data,
        )

    @property
    def internal_status(self) -> PaymentStatus:
        return map_status(self.status)

    def audit_data(self) -> dict[str, Any]:
        return {
            "mp_payment_id": self.id,
            "mp_status": self.status,
            "mp_status_detail": self.status_detail,
            "payment_method": self.payment_method_id,
            "payment_type": self.payment_type_id,
            "date_approved": self.date_approved,
        }


class MercadoPagoClient:
    def __init__(
        self,
        access_token: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        session: requests.Session | None = None,
        sleep=time.sleep,
    ):
        self.access_token = access_token if access_token is not None else settings.MERCADOPAGO_ACCESS_TOKEN
        self.base_url = (base_url or settings.MERCADOPAGO_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.GATEWAY_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else settings.GATEWAY_MAX_RETRIES
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.GATEWAY_BACKOFF_SECONDS
        self.session = session or requests.Session()
        self.verify = settings.MERCADOPAGO_CA_BUNDLE or True
        self._sleep = sleep

    def _request(self, method: str, path: str, json: dict | None = None, idempotency_key: str | None = None) -> dict:
        if not self.access_token:
            raise GatewayRequestError("Mercado Pago access token is not configured")

        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key

        last_error: GatewayError | None = None
        for attempt in range(1, self.max_retries + 2):
            try:
                response = self.session.request(
                    method,
                    url,
                    json=json,
                    headers=headers,
                    timeout=self.timeout,
                    verify=self.verify,
                )
            except requests.Timeout as exc:
                last_error = GatewayTimeoutError(f"Mercado Pago request timed out: {method} {path}")
                logger.warning("Mercado Pago timeout on %s %s (attempt %s): %s", method, path, attempt, exc)
            except requests.RequestException as exc:
                last_error = GatewayUnavailableError(f"Mercado Pago is unreachable: {method} {path}")
                logger.warning("Mercado Pago connection error on %s %s (attempt %s): %s", method, path, attempt, exc)
            else:
                if response.status_code in RETRYABLE_STATUS_CODES:
                    last_error = GatewayUnavailableError(
                        f"Mercado Pago answered {response.status_code}",
                        status_code=response.status_code,
                    )
                    logger.warning(
                        "Mercado Pago returned %s on %s %s (attempt %s)",
                        response.status_code,
                        method,
                        path,
                        attempt,
                    )
                elif response.status_code >= 400:
                    logger.error(
                        "Mercado Pago rejected %s %s with %s: %s",
                        method,
                        path,
                        response.status_code,
                        response.text[:500],
                    )
                    raise GatewayRequestError(
                        f"Mercado Pago rejected the request ({response.status_code})",
                        status_code=response.status_code,
                    )
                else:
                    try:
                        return response.json()
                    except ValueError as exc:
                        raise GatewayRequestError(
                            "Mercado Pago returned a non-JSON response",
                            status_code=response.status_code,
                        ) from exc

            if attempt <= self.max_retries:
                self._sleep(self.backoff_seconds * (2 ** (attempt - 1)))

        logger.error("Mercado Pago %s %s failed after %s attempts: %s", method, path, self.max_retries + 1, last_error)
        raise last_error

    def create_preference(self, preference: PaymentPreferenceRequest) -> PreferenceResult:
        logger.info(
            "Creating Mercado Pago preference: external_reference=%s items=%s",
            preference.external_reference,
            len(preference.items),
        )
        data = self._request(
            "POST",
            "/checkout/preferences",
            json=preference.to_dict(),
            idempotency_key=f"preference-{preference.external_reference}",
        )
        if not data.get("id"):
            raise GatewayRequestError("Mercado Pago preference response has no id")
        logger.info(
            "Mercado Pago preference created: id=%s external_reference=%s",
            data["id"],
            preference.external_reference,
        )
        return PreferenceResult(
            preference_id=str(data["id"]),
            init_point=data.get("init_point"),
            sandbox_init_point=data.get("sandbox_init_point"),
        )

    def get_payment(self, payment_id: str) -> GatewayPayment:
        logger.info("Fetching Mercado Pago payment %s", payment_id)
        payment = GatewayPayment.from_api(self._request("GET", f"/v1/payments/{payment_id}"))
        logger.info("Mercado Pago payment %s status=%s", payment.id, payment.status)
        return payment


def _parse_signature_header(x_signature: str) -> dict[str, str]:
    parts = {}
    for chunk in x_signature.split(","):
        key, sep, value = chunk.partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def build_signature_manifest(data_id: str | None, request_id: str | None, ts: str) -> str:
    manifest = ""
    if data_id:
        data_id = str(data_id)
        manifest += f"id:{data_id.lower() if data_id.isalnum() else data_id};"
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{ts};"
    return manifest


def validate_webhook_signature(
    x_signature: str | None,
    x_request_id: str | None,
    data_id: str | None,
    secret: str,
) -> bool:
    """Check the ``x-signature`` header Mercado Pago sends with notifications."""
    if not x_signature:
        logger.warning("Missing Mercado Pago webhook signature header")
        return False

    parts = _parse_signature_header(x_signature)
    ts = parts.get("ts")
    received = parts.get("v1")
    if not ts or not received:
        logger.warning("Malformed Mercado Pago signature header")
        return False

    manifest = build_signature_manifest(data_id, x_request_id, ts)
    expected = hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, received):
        logger.warning("Mercado Pago webhook signature mismatch (request_id=%s)", x_request_id)
        return False
    return True
