import logging
import time
from pathlib import Path

from sqlalchemy import inspect, text
from sqlalchemy.exc import OperationalError

from app.config import settings
from app.models.database import Base, _normalize_database_url, engine
from app import models  # noqa: F401 - register models

logger = logging.getLogger(__name__)

# Tables the order, payment and job flows cannot run without.
REQUIRED_TABLES = ("products", "carts", "orders", "order_items", "payments", "coupon_usages", "jobs")


def _ping() -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def wait_for_db(retries: int, retry_delay_seconds: int) -> None:
    """Block until the database accepts connections."""
    last_error = None
    for attempt in range(1, retries + 1):
        try:
            _ping()
        except OperationalError as exc:
            last_error = exc
            logger.warning("Database not reachable yet (attempt %s/%s): %s", attempt, retries, exc)
            if attempt < retries:
                time.sleep(retry_delay_seconds)
            continue
        logger.info("Database connection established on attempt %s", attempt)
        return

    raise RuntimeError(
        f"Database is unreachable after {retries} attempts. Check DATABASE_URL and ensure the DB server is running."
    ) from last_error


def check_schema(bind=None) -> None:
    existing = set(inspect(bind or engine).get_table_names())
    missing = [table for table in REQUIRED_TABLES if table not in existing]
    if missing:
        raise RuntimeError(
            f"Database schema is incomplete, missing tables: {', '.join(missing)}. Run 'alembic upgrade head'."
        )


def init_db():
    wait_for_db(
        retries=settings.DB_CONNECT_RETRIES,
        retry_delay_seconds=settings.DB_CONNECT_RETRY_DELAY_SECONDS,
    )
    if settings.DATABASE_URL.startswith("sqlite://"):
        # Local development and tests: no migrations, build tables from the models.
        Base.metadata.create_all(bind=engine)
        return

    run_migrations()
    check_schema()


def run_migrations(revision: str = "head") -> None:
    try:
        from alembic import command
        from alembic.config import Config
    except ImportError as exc:  # pragma: no cover - broken install
        raise RuntimeError(
            "Alembic is required outside sqlite. Install the project dependencies (pip install -e .)."
        ) from exc

    project_root = Path(__file__).resolve().parent.parent
    alembic_ini = project_root / "alembic.ini"
    script_location = project_root / "alembic"
    if not alembic_ini.exists() or not script_location.exists():
        raise RuntimeError("Alembic configuration is missing (alembic.ini or alembic/ directory not found).")

    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(script_location))
    config.set_main_option("sqlalchemy.url", _normalize_database_url(settings.DATABASE_URL))
    logger.info("Applying database migrations up to %s", revision)
    command.upgrade(config, revision)
