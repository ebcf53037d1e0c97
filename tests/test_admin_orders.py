import pytest
from fastapi import status

from app.models import Job
from app.models.database import utcnow
from app.models.enums import JobStatus
from app.services import job_queue, notification_service, stock_service


@pytest.fixture
def paid_order(db, make_order, product, test_user):
    order = make_order([(product, 2)], user=test_user)
    order.apply_payment_approved(utcnow(), "9001")
    db.commit()
    return order


def _set_status(client, order_id, headers, new_status, notes=None):
    return client.patch(
        f"/api/admin/orders/{order_id}/status",
        json={"status": new_status, "notes": notes},
        headers=headers,
    )


def test_ship_then_deliver(client, db, admin_headers, admin_user, paid_order):
    response = _set_status(client, paid_order.id, admin_headers, "shipped", "Tracking AR123")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "shipped"
    assert data["shipped_at"] is not None
    assert data["history"][-1] == {
        "status": "Shipped",
        "notes": "Tracking AR123",
        "changed_by": admin_user.id,
        "created_at": data["history"][-1]["created_at"],
    }
    assert db.query(Job).filter(Job.name == notification_service.SEND_ORDER_STATUS_CHANGED).count() == 1

    response = _set_status(client, paid_order.id, admin_headers, "delivered")
    assert response.json()["status"] == "delivered"


def test_cannot_skip_shipping(client, admin_headers, paid_order):
    response = _set_status(client, paid_order.id, admin_headers, "delivered")

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"]["code"] == "INVALID_STATUS_TRANSITION"


def test_cannot_ship_unpaid_order(client, admin_headers, make_order, product):
    order = make_order([(product, 1)])

    response = _set_status(client, order.id, admin_headers, "shipped")

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"]["code"] == "ORDER_NOT_PAID"


def test_cannot_move_back_to_pending(client, admin_headers, paid_order):
    response = _set_status(client, paid_order.id, admin_headers, "pending")

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"]["code"] == "INVALID_STATUS_TRANSITION"


def test_unknown_status_is_a_request_error(client, admin_headers, paid_order):
    response = _set_status(client, paid_order.id, admin_headers, "teleported")
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_admin_cancel_releases_stock(client, db, admin_headers, paid_order, product):
    response = _set_status(client, paid_order.id, admin_headers, "cancelled", "Out of stock at warehouse")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "cancelled"
    assert response.json()["payment_status"] == "paid"
    db.refresh(product)
    assert product.stock == 10


def test_refund_keeps_stock_released_state(client, db, admin_headers, paid_order, product):
    response = _set_status(client, paid_order.id, admin_headers, "refunded")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "refunded"
    assert response.json()["payment_status"] == "refunded"
    db.refresh(product)
    assert product.stock == 8


def test_unknown_order(client, admin_headers):
    response = _set_status(client, 4242, admin_headers, "shipped")
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_queue_stock_update(client, db, admin_headers, product):
    response = client.post(
        f"/api/admin/products/{product.id}/stock",
        json={"quantity": 5, "operation": "increment"},
        headers=admin_headers,
    )

    assert response.status_code == status.HTTP_202_ACCEPTED
    job = db.get(Job, response.json()["job_id"])
    assert job.name == stock_service.UPDATE_PRODUCT_STOCK
    assert response.json()["status"] == JobStatus.PENDING.value

    job_queue.run_due_jobs(db)
    db.refresh(product)
    assert product.stock == 15


def test_queue_stock_update_validation(client, admin_headers, product):
    bad_operation = client.post(
        f"/api/admin/products/{product.id}/stock",
        json={"quantity": 5, "operation": "multiply"},
        headers=admin_headers,
    )
    missing = client.post("/api/admin/products/999/stock", json={"quantity": 1}, headers=admin_headers)

    assert bad_operation.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert missing.status_code == status.HTTP_404_NOT_FOUND
