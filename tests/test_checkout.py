from decimal import Decimal

import pytest
from fastapi import status

from app.errors import GatewayUnavailableError
from app.models import Cart, Coupon, Job, Order, Payment
from app.models.enums import PaymentStatus
from app.services import notification_service, payment_service

GUEST = {"X-Session-Id": "guest-session-1"}


def _address(email="buyer@example.com"):
    return {
        "name": "Ana Perez",
        "email": email,
        "phone": "+54 11 5555-5555",
        "address": "Av. Corrientes 1234",
        "city": "Buenos Aires",
        "state": "CABA",
        "postal_code": "C1043",
        "country": "AR",
    }


@pytest.fixture(autouse=True)
def gateway(monkeypatch, fake_gateway):
    monkeypatch.setattr(payment_service, "get_client", lambda: fake_gateway)
    return fake_gateway


def _add_to_cart(client, product, quantity=1, headers=GUEST):
    response = client.post("/api/cart/items", json={"product_id": product.id, "quantity": quantity}, headers=headers)
    assert response.status_code == status.HTTP_201_CREATED
    return response.json()


def _checkout(client, headers=GUEST, **overrides):
    body = {"shipping_address": _address(), "payment_method": "mercado_pago", **overrides}
    return client.post("/api/checkout", json=body, headers=headers)


def test_guest_checkout_creates_pending_order_and_payment_link(client, db, product, gateway):
    _add_to_cart(client, product, 2)

    response = _checkout(client)

    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    order = data["order"]
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["subtotal"] == "66.66"
    assert order["total"] == "66.66"
    assert order["order_number"].startswith("ORD-")
    assert order["billing_address"] == order["shipping_address"]
    assert [h["status"] for h in order["history"]] == ["Order created"]
    assert data["payment_url"] == "https://sandbox.mercadopago.com/checkout?pref_id=pref-123"
    assert data["warnings"] == []

    db.refresh(product)
    assert product.stock == 8
    payment = db.query(Payment).one()
    assert payment.status == PaymentStatus.PENDING.value
    assert payment.external_id == "pref-123"
    preference = gateway.create_preference.call_args.args[0]
    assert preference.external_reference == str(payment.id)
    assert preference.payer.email == "buyer@example.com"

    assert db.query(Cart).one().is_empty
    assert {job.name for job in db.query(Job).all()} == {
        notification_service.SEND_ORDER_CONFIRMATION,
        notification_service.SEND_PENDING_PAYMENT_REMINDER,
    }


def test_checkout_with_tax_added_on_top(client, monkeypatch, product):
    monkeypatch.setenv("TAX_ENABLED", "true")
    monkeypatch.setenv("TAX_INCLUDED_IN_PRICES", "false")
    _add_to_cart(client, product, 1)

    order = _checkout(client).json()["order"]

    assert order["tax"] == "7.00"
    assert order["total"] == "40.33"


def test_logged_in_checkout_uses_account_email(client, db, auth_headers, test_user, product):
    _add_to_cart(client, product, 1, headers=auth_headers)

    response = _checkout(client, headers=auth_headers, shipping_address=_address(email=None))

    assert response.status_code == status.HTTP_201_CREATED
    order = db.query(Order).one()
    assert order.user_id == test_user.id
    assert order.shipping_email == test_user.email


def test_guest_checkout_requires_contact_email(client, product):
    _add_to_cart(client, product, 1)

    response = _checkout(client, shipping_address=_address(email=None))

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert "shipping_address.email" in error["details"]["errors"]


def test_empty_cart_cannot_be_checked_out(client, db):
    response = _checkout(client)

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"]["code"] == "EMPTY_CART"
    assert db.query(Order).count() == 0


def test_stock_shortfall_blocks_checkout_without_side_effects(client, db, product, gateway):
    _add_to_cart(client, product, 3)
    product.stock = 1
    db.commit()

    response = _checkout(client)

    assert response.status_code == status.HTTP_409_CONFLICT
    error = response.json()["error"]
    assert error["code"] == "CART_VALIDATION_FAILED"
    assert error["details"]["items"][0]["available"] == 1
    assert db.query(Order).count() == 0
    db.refresh(product)
    assert product.stock == 1
    gateway.create_preference.assert_not_called()


def test_offline_payment_method_skips_gateway(client, db, product, gateway):
    _add_to_cart(client, product, 1)

    response = _checkout(client, payment_method="bank_transfer")

    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["payment_url"] is None
    assert db.query(Payment).count() == 0
    gateway.create_preference.assert_not_called()


def test_unavailable_payment_method_is_rejected(client, monkeypatch, product):
    monkeypatch.setenv("MERCADOPAGO_ACCESS_TOKEN", "")
    _add_to_cart(client, product, 1)

    response = _checkout(client)

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert "payment_method" in response.json()["error"]["details"]["errors"]


def test_gateway_outage_keeps_order_pending_with_warning(client, db, product, gateway):
    gateway.create_preference.side_effect = GatewayUnavailableError("down", status_code=503)
    _add_to_cart(client, product, 1)

    response = _checkout(client)

    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["payment_url"] is None
    assert data["warnings"]
    assert data["order"]["status"] == "pending"
    assert db.query(Payment).one().status == PaymentStatus.FAILED.value


def test_coupon_is_applied_and_consumed(client, db, make_product):
    mate = make_product(price="100.00")
    db.add(Coupon(code="WELCOME10", type="percentage", value=Decimal("10"), max_uses=1))
    db.commit()
    _add_to_cart(client, mate, 1)
    assert client.post("/api/cart/coupons", json={"code": "WELCOME10"}, headers=GUEST).status_code == 200

    order = _checkout(client).json()["order"]

    assert order["discount"] == "10.00"
    assert order["total"] == "90.00"
    assert db.query(Coupon).one().used_count == 1


def test_coupon_exhausted_before_checkout_is_rejected(client, db, product):
    coupon = Coupon(code="ONCE", type="fixed", value=Decimal("5"), max_uses=1)
    db.add(coupon)
    db.commit()
    _add_to_cart(client, product, 1)
    client.post("/api/cart/coupons", json={"code": "ONCE"}, headers=GUEST)
    coupon.used_count = 1
    db.commit()

    response = _checkout(client)

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["error"]["code"] == "INVALID_COUPON"
    assert db.query(Order).count() == 0
