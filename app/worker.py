"""Background worker: expiry sweep, payment reminders and queued jobs.

Run with ``python -m app.worker`` (add ``--once`` for a single pass, e.g.
from cron).
"""

import argparse
import logging
import time

from sqlalchemy.orm import Session

from app.config import settings
from app.models.database import SessionLocal
from app.services import job_queue, notification_service, order_expiry_service, stock_service  # noqa: F401 - register job handlers

logger = logging.getLogger("app.worker")


def run_once(db: Session) -> dict[str, int]:
    expired = order_expiry_service.expire_overdue_unpaid_orders(db)
    reminders = order_expiry_service.send_pending_payment_reminders(db)
    jobs = job_queue.run_due_jobs(db)
    return {"expired": expired, "reminders": reminders, "jobs": jobs}


def run_forever(interval_seconds: int) -> None:
    logger.info("Worker started, sweeping every %ss", interval_seconds)
    while True:
        db = SessionLocal()
        try:
            counts = run_once(db)
            if any(counts.values()):
                logger.info(
                    "Worker pass: expired=%s reminders=%s jobs=%s",
                    counts["expired"],
                    counts["reminders"],
                    counts["jobs"],
                )
        except Exception:
            db.rollback()
            logger.exception("Worker pass failed")
        finally:
            db.close()
        time.sleep(interval_seconds)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="app.worker", description="Order expiry and notification worker")
    parser.add_argument("--once", action="store_true", help="run a single pass and exit")
    parser.add_argument(
        "--interval",
        type=int,
        default=settings.SWEEP_INTERVAL_SECONDS,
        help="seconds between passes",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.once:
        db = SessionLocal()
        try:
            counts = run_once(db)
        finally:
            db.close()
        logger.info("Worker pass: expired=%s reminders=%s jobs=%s", counts["expired"], counts["reminders"], counts["jobs"])
        return 0

    run_forever(args.interval)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
