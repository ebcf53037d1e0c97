import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.errors import EntityNotFoundError, OrderLockedError
from app.models.order import Order

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOCK_RETRY_DELAY_SECONDS = 0.05


def lock_order(db: Session, order_id: int) -> Order:
    """Lock the order row and reload it from the database.

    ``populate_existing`` discards any stale copy already in the session, so
    guards are always evaluated against the state the lock protects.
    """
    order = (
        db.query(Order)
        .filter(Order.id == order_id)
        .with_for_update(of=Order)
        .populate_existing()
        .first()
    )
    if order is None:
        raise EntityNotFoundError("Order", order_id)
    return order


def run_order_transition(
    db: Session,
    order_id: int,
    transition: Callable[[Order], T],
    retries: int | None = None,
) -> T:
    """Run ``transition`` on the locked order and commit.

    Lock timeouts and optimistic version conflicts are retried; anything
    else rolls back and propagates.
    """
    attempts = max(1, retries if retries is not None else settings.ORDER_LOCK_RETRIES)
    for attempt in range(1, attempts + 1):
        try:
            order = lock_order(db, order_id)
            result = transition(order)
            db.commit()
            return result
        except (StaleDataError, OperationalError) as exc:
            db.rollback()
            logger.warning(
                "Order %s is locked or was modified concurrently (attempt %s/%s): %s",
                order_id,
                attempt,
                attempts,
                exc,
            )
            if attempt < attempts:
                time.sleep(LOCK_RETRY_DELAY_SECONDS * (2 ** (attempt - 1)))
        except Exception:
            db.rollback()
            raise

    raise OrderLockedError(order_id)
