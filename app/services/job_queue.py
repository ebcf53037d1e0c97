"""Durable job queue backed by the ``jobs`` table.

Jobs survive restarts, become runnable at ``available_at`` and are retried
with exponential backoff until ``max_attempts`` is reached. Handlers must be
idempotent or safe to run again: a job whose worker died mid-run is handed
out again once ``JOB_VISIBILITY_TIMEOUT_SECONDS`` has passed.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.database import utcnow
from app.models.enums import JobStatus
from app.models.job import Job

logger = logging.getLogger(__name__)

JobHandler = Callable[[Session, dict], None]

HANDLERS: dict[str, JobHandler] = {}


def job_handler(name: str):
    def register(func: JobHandler) -> JobHandler:
        HANDLERS[name] = func
        return func

    return register


def enqueue(
    db: Session,
    name: str,
    payload: dict,
    delay_seconds: int = 0,
    dedupe_key: str | None = None,
    max_attempts: int | None = None,
) -> Job:
    """Persist a job and commit. An existing job with the same dedupe key wins."""
    if dedupe_key:
        existing = db.query(Job).filter(Job.dedupe_key == dedupe_key).first()
        if existing is not None:
            logger.debug("Job %s already queued as %s", dedupe_key, existing.id)
            return existing

    job = Job(
        name=name,
        payload=payload,
        status=JobStatus.PENDING.value,
        attempts=0,
        max_attempts=max_attempts or settings.NOTIFICATION_MAX_ATTEMPTS,
        available_at=utcnow() + timedelta(seconds=delay_seconds),
        dedupe_key=dedupe_key,
    )
    db.add(job)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = db.query(Job).filter(Job.dedupe_key == dedupe_key).first()
        if existing is None:
            raise
        return existing
    logger.info("Queued job %s (%s) available in %ss", job.id, name, delay_seconds)
    return job


def _claimable(now: datetime):
    """Pending jobs, plus running ones whose lease has expired."""
    stale_before = now - timedelta(seconds=settings.JOB_VISIBILITY_TIMEOUT_SECONDS)
    return or_(
        Job.status == JobStatus.PENDING.value,
        and_(Job.status == JobStatus.RUNNING.value, Job.updated_at <= stale_before),
    )


def _claim(db: Session, job_id: int, now: datetime | None = None) -> bool:
    now = now or utcnow()
    result = db.execute(
        update(Job)
        .where(Job.id == job_id, _claimable(now))
        .values(status=JobStatus.RUNNING.value, attempts=Job.attempts + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def run_job(db: Session, job: Job, now: datetime | None = None) -> bool:
    """Run a claimed job. Returns True on success."""
    handler = HANDLERS.get(job.name)
    job_id = job.id
    try:
        if handler is None:
            raise LookupError(f"No handler registered for job {job.name!r}")
        handler(db, dict(job.payload or {}))
    except Exception as exc:
        db.rollback()
        job = db.get(Job, job_id, populate_existing=True)
        job.last_error = f"{type(exc).__name__}: {exc}"[:2000]
        if job.attempts >= job.max_attempts:
            job.status = JobStatus.FAILED.value
            logger.error(
                "Job %s (%s) failed permanently after %s attempts: %s",
                job.id,
                job.name,
                job.attempts,
                exc,
            )
        else:
            delay = settings.JOB_RETRY_BACKOFF_SECONDS * (2 ** (job.attempts - 1))
            job.status = JobStatus.PENDING.value
            job.available_at = (now or utcnow()) + timedelta(seconds=delay)
            logger.warning(
                "Job %s (%s) attempt %s/%s failed, retrying in %ss: %s",
                job.id,
                job.name,
                job.attempts,
                job.max_attempts,
                delay,
                exc,
            )
        db.commit()
        return False

    job = db.get(Job, job_id, populate_existing=True)
    job.status = JobStatus.DONE.value
    job.last_error = None
    db.commit()
    return True


def run_due_jobs(db: Session, now: datetime | None = None, limit: int = 100) -> int:
    """Run every due job, including abandoned running ones. Returns the number run."""
    now = now or utcnow()
    due_ids = [
        job_id
        for (job_id,) in db.query(Job.id)
        .filter(_claimable(now), Job.available_at <= now)
        .order_by(Job.available_at, Job.id)
        .limit(limit)
        .all()
    ]

    processed = 0
    for job_id in due_ids:
        if not _claim(db, job_id, now):
            continue
        job = db.get(Job, job_id, populate_existing=True)
        run_job(db, job, now)
        processed += 1
    return processed
