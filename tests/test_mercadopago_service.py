import hashlib
import hmac
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from app.errors import GatewayRequestError, GatewayTimeoutError, GatewayUnavailableError, ValidationError
from app.models.enums import PaymentStatus
from app.services.mercadopago_service import (
    MercadoPagoClient,
    Payer,
    PaymentPreferenceRequest,
    PreferenceItem,
    build_signature_manifest,
    map_status,
    validate_webhook_signature,
)

BACK_URLS = {
    "success": "https://shop.example.com/checkout/success",
    "failure": "https://shop.example.com/checkout/failure",
    "pending": "https://shop.example.com/checkout/pending",
}


def _response(status_code=200, json_data=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = json_data if json_data is not None else {}
    response.text = str(json_data)
    return response


def _client(*responses, max_retries=2):
    session = MagicMock()
    session.request.side_effect = list(responses)
    sleeps = []
    client = MercadoPagoClient(
        access_token="TEST-token",
        base_url="https://api.mercadopago.test",
        timeout=5,
        max_retries=max_retries,
        backoff_seconds=0.5,
        session=session,
        sleep=sleeps.append,
    )
    return client, session, sleeps


def _preference(**overrides):
    fields = {
        "items": [PreferenceItem(id="1", title="Mate Gourd", quantity=1, unit_price=Decimal("33.33"), currency_id="ARS")],
        "payer": Payer(name="Ana Perez", email="ana@example.com"),
        "back_urls": BACK_URLS,
        "external_reference": "42",
    }
    fields.update(overrides)
    return PaymentPreferenceRequest(**fields)


@pytest.mark.parametrize(
    "gateway_status,expected",
    [
        ("approved", PaymentStatus.PAID),
        ("authorized", PaymentStatus.PAID),
        ("in_process", PaymentStatus.PENDING),
        ("rejected", PaymentStatus.FAILED),
        ("cancelled", PaymentStatus.CANCELLED),
        ("charged_back", PaymentStatus.REFUNDED),
        ("APPROVED ", PaymentStatus.PAID),
        ("something_new", PaymentStatus.FAILED),
        (None, PaymentStatus.FAILED),
    ],
)
def test_map_status(gateway_status, expected):
    assert map_status(gateway_status) == expected


def test_get_payment_sends_bearer_token_and_timeout():
    client, session, _ = _client(_response(200, {"id": 9001, "status": "approved", "external_reference": "42"}))

    payment = client.get_payment("9001")

    assert payment.id == "9001"
    assert payment.internal_status == PaymentStatus.PAID
    assert payment.external_reference == "42"
    args, kwargs = session.request.call_args
    assert args == ("GET", "https://api.mercadopago.test/v1/payments/9001")
    assert kwargs["headers"]["Authorization"] == "Bearer TEST-token"
    assert kwargs["timeout"] == 5


def test_server_errors_are_retried_with_exponential_backoff():
    client, session, sleeps = _client(
        _response(503),
        _response(500),
        _response(200, {"id": "9001", "status": "pending"}),
    )

    payment = client.get_payment("9001")

    assert payment.status == "pending"
    assert session.request.call_count == 3
    assert sleeps == [0.5, 1.0]


def test_retries_are_bounded():
    client, session, sleeps = _client(_response(502), _response(502), _response(502))

    with pytest.raises(GatewayUnavailableError) as exc_info:
        client.get_payment("9001")

    assert exc_info.value.retryable is True
    assert exc_info.value.status_code == 502
    assert session.request.call_count == 3
    assert len(sleeps) == 2


def test_client_errors_fail_immediately():
    client, session, sleeps = _client(_response(400, {"message": "invalid"}))

    with pytest.raises(GatewayRequestError) as exc_info:
        client.get_payment("9001")

    assert exc_info.value.retryable is False
    assert session.request.call_count == 1
    assert sleeps == []


def test_timeouts_become_retryable_gateway_errors():
    client, session, _ = _client(requests.Timeout("slow"), requests.Timeout("slow"), max_retries=1)

    with pytest.raises(GatewayTimeoutError):
        client.get_payment("9001")
    assert session.request.call_count == 2


def test_missing_access_token_is_rejected_without_calling_the_api():
    session = MagicMock()
    client = MercadoPagoClient(access_token="", session=session)

    with pytest.raises(GatewayRequestError):
        client.get_payment("9001")
    session.request.assert_not_called()


def test_create_preference_uses_idempotency_key():
    client, session, _ = _client(
        _response(201, {"id": "pref-1", "init_point": "https://mp/init", "sandbox_init_point": "https://mp/sandbox"})
    )

    result = client.create_preference(_preference())

    assert result.preference_id == "pref-1"
    assert result.redirect_url(sandbox=True) == "https://mp/sandbox"
    assert result.redirect_url(sandbox=False) == "https://mp/init"
    kwargs = session.request.call_args.kwargs
    assert kwargs["headers"]["X-Idempotency-Key"] == "preference-42"
    assert kwargs["json"]["items"][0]["unit_price"] == 33.33
    assert "notification_url" not in kwargs["json"]


def test_create_preference_requires_an_id_in_the_response():
    client, _, _ = _client(_response(201, {"init_point": "https://mp/init"}))
    with pytest.raises(GatewayRequestError):
        client.create_preference(_preference())


def test_preference_request_validation_collects_field_errors():
    with pytest.raises(ValidationError) as exc_info:
        _preference(
            items=[PreferenceItem(id="1", title="Mate", quantity=0, unit_price=Decimal("0"), currency_id="ARS")],
            payer=Payer(name="Ana", email="not-an-email"),
            back_urls={"success": BACK_URLS["success"]},
            external_reference="",
        )

    errors = exc_info.value.errors
    assert "items.0.quantity" in errors
    assert "items.0.unit_price" in errors
    assert "payer.email" in errors
    assert "back_urls" in errors
    assert "external_reference" in errors


def test_preference_request_requires_items():
    with pytest.raises(ValidationError) as exc_info:
        _preference(items=[])
    assert exc_info.value.errors["items"] == ["Items cannot be empty"]


def test_signature_manifest_lowercases_alphanumeric_ids():
    assert build_signature_manifest("ABC123", "req-1", "1700000000") == "id:abc123;request-id:req-1;ts:1700000000;"
    assert build_signature_manifest(None, None, "1") == "ts:1;"


def _sign(secret, data_id, request_id, ts):
    manifest = build_signature_manifest(data_id, request_id, ts)
    return hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()


def test_validate_webhook_signature():
    digest = _sign("whsec", "9001", "req-1", "1700000000")
    header = f"ts=1700000000,v1={digest}"

    assert validate_webhook_signature(header, "req-1", "9001", "whsec") is True
    assert validate_webhook_signature(header, "req-2", "9001", "whsec") is False
    assert validate_webhook_signature(header, "req-1", "9001", "other") is False
    assert validate_webhook_signature("ts=1700000000", "req-1", "9001", "whsec") is False
    assert validate_webhook_signature(None, "req-1", "9001", "whsec") is False
