from unittest.mock import patch

from fastapi import status

from app.models import Job, Order, Payment
from app.services import job_queue, order_expiry_service
from conftest import gateway_payment, hours_ago


def test_full_order_flow(client, db, fake_gateway, auth_headers, admin_headers, product):
    """Cart -> checkout -> Mercado Pago webhook -> ship -> deliver."""
    # 1. Fill the cart
    response = client.post("/api/cart/items", json={"product_id": product.id, "quantity": 2}, headers=auth_headers)
    assert response.status_code == status.HTTP_201_CREATED

    # 2. Checkout
    with patch("app.services.payment_service.get_client", return_value=fake_gateway):
        response = client.post(
            "/api/checkout",
            json={
                "shipping_address": {
                    "name": "Ana Perez",
                    "address": "Av. Corrientes 1234",
                    "city": "Buenos Aires",
                    "postal_code": "C1043",
                    "country": "AR",
                },
                "payment_method": "mercado_pago",
            },
            headers=auth_headers,
        )
    assert response.status_code == status.HTTP_201_CREATED
    order_id = response.json()["order"]["id"]
    assert response.json()["payment_url"]

    # 3. Mercado Pago confirms the payment
    payment = db.query(Payment).filter(Payment.order_id == order_id).one()
    with patch("app.services.webhook_reconciler.MercadoPagoClient") as client_cls:
        client_cls.return_value.get_payment.return_value = gateway_payment(payment)
        response = client.post("/webhooks/mercadopago", json={"type": "payment", "data": {"id": "9001"}})
    assert response.json()["status"] == "processed"

    response = client.get(f"/api/orders/{order_id}", headers=auth_headers)
    assert response.json()["status"] == "processing"
    assert response.json()["payment_status"] == "paid"

    # 4. Fulfilment
    for new_status in ("shipped", "delivered"):
        response = client.patch(
            f"/api/admin/orders/{order_id}/status",
            json={"status": new_status},
            headers=admin_headers,
        )
        assert response.status_code == status.HTTP_200_OK

    history = [entry["status"] for entry in client.get(f"/api/orders/{order_id}", headers=auth_headers).json()["history"]]
    assert history == ["Order created", "Payment confirmed", "Processing", "Shipped", "Delivered"]

    # 5. Queued notifications all go through (no SMTP or relay configured)
    job_queue.run_due_jobs(db)
    statuses = {name: status_ for name, status_ in db.query(Job.name, Job.status).all()}
    assert statuses["send_order_confirmation"] == "done"
    assert statuses["send_order_paid"] == "done"
    db.refresh(product)
    assert product.stock == 8


def test_unpaid_order_expires_and_late_payment_is_flagged(client, db, fake_gateway, product):
    """Checkout -> no payment -> sweep cancels -> payment arrives anyway."""
    guest = {"X-Session-Id": "late-payer"}
    client.post("/api/cart/items", json={"product_id": product.id, "quantity": 1}, headers=guest)
    with patch("app.services.payment_service.get_client", return_value=fake_gateway):
        response = client.post(
            "/api/checkout",
            json={
                "shipping_address": {
                    "name": "Luis Gomez",
                    "email": "luis@example.com",
                    "address": "Calle 7 456",
                    "city": "La Plata",
                    "postal_code": "B1900",
                    "country": "AR",
                },
            },
            headers=guest,
        )
    order = db.get(Order, response.json()["order"]["id"])
    order.created_at = hours_ago(25)
    db.commit()

    assert order_expiry_service.expire_overdue_unpaid_orders(db) == 1
    db.refresh(product)
    assert product.stock == 10

    payment = db.query(Payment).one()
    with patch("app.services.webhook_reconciler.MercadoPagoClient") as client_cls:
        client_cls.return_value.get_payment.return_value = gateway_payment(payment)
        client.post("/webhooks/mercadopago", json={"type": "payment", "data": {"id": "9001"}})

    db.refresh(order)
    assert order.status == "cancelled"
    assert order.payment_status == "paid"
    assert db.query(Job).filter(Job.name == "send_late_payment_alert").count() == 1
