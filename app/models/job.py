from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from app.models.database import Base, utcnow
from app.models.enums import JobStatus


class Job(Base):
    """Durable queued side effect (emails, broadcasts, stock updates)."""

    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(64), nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(String(16), nullable=False, default=JobStatus.PENDING.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    available_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    last_error = Column(Text, nullable=True)
    dedupe_key = Column(String(128), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
