from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.dependencies import get_current_admin
from app.errors import EntityNotFoundError
from app.models import Product, User, get_db
from app.schemas.orders import JobQueuedResponse, OrderResponse, OrderStatusUpdateRequest, StockUpdateRequest
from app.services import order_service, stock_service

router = APIRouter()


@router.patch(
    "/orders/{order_id}/status",
    response_model=OrderResponse,
    summary="Change order status",
)
def update_order_status(
    order_id: int,
    body: OrderStatusUpdateRequest,
    admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Ship, deliver, cancel or refund an order. Shipping and delivery require a
    paid order and follow processing -> shipped -> delivered. Cancelling
    returns the reserved stock.
    """
    order = order_service.update_order_status(db, order_id, body.status, changed_by=admin.id, notes=body.notes)
    return OrderResponse.model_validate(order)


@router.post(
    "/products/{product_id}/stock",
    response_model=JobQueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a stock adjustment",
)
def update_product_stock(
    product_id: int,
    body: StockUpdateRequest,
    admin: Annotated[User, Depends(get_current_admin)],
    db: Annotated[Session, Depends(get_db)],
):
    """Restock or write off units. Applied by the worker."""
    if db.get(Product, product_id) is None:
        raise EntityNotFoundError("Product", product_id)
    job = stock_service.queue_stock_update(db, product_id, body.quantity, body.operation, body.variant_id)
    return JobQueuedResponse(job_id=job.id, status=job.status)
