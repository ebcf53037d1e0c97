import logging
import os
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import admin_orders, cart, checkout, order
from app.config import settings
from app.db_init import init_db
from app.errors import AppError
from app.services import notification_service, stock_service  # noqa: F401 - register job handlers
from app.webhooks import mercadopago_webhook

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("app.startup")


RAILWAY_ENV_VARS = (
    "RAILWAY_PROJECT_ID",
    "RAILWAY_SERVICE_ID",
    "RAILWAY_ENVIRONMENT",
    "RAILWAY_ENVIRONMENT_NAME",
    "RAILWAY_PUBLIC_DOMAIN",
)


def _is_localhost(host: str | None) -> bool:
    return host in {"localhost", "127.0.0.1"}


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.hostname)


def _is_railway_runtime() -> bool:
    return any(os.getenv(env_name) for env_name in RAILWAY_ENV_VARS)


def _get_cors_origins(cors_raw: str) -> list[str]:
    return [origin.strip().strip("'\"") for origin in cors_raw.split(",") if origin.strip()]


def _validate_database_url_for_runtime(database_url: str) -> None:
    parsed = urlparse(database_url)
    scheme = parsed.scheme
    host = parsed.hostname
    db_name = parsed.path.lstrip("/")

    if not scheme:
        raise RuntimeError("DATABASE_URL is missing URL scheme (expected postgresql:// or postgresql+psycopg://).")
    if scheme == "sqlite":
        return
    if scheme not in {"postgres", "postgresql", "postgresql+psycopg"}:
        raise RuntimeError(
            f"DATABASE_URL has unsupported scheme '{scheme}' "
            "(expected postgresql:// or postgresql+psycopg://)."
        )
    if not host:
        raise RuntimeError("DATABASE_URL is missing host.")
    if not db_name:
        raise RuntimeError("DATABASE_URL is missing database name in path.")
    if _is_railway_runtime() and _is_localhost(host):
        raise RuntimeError(
            f"Invalid DATABASE_URL for Railway runtime: host is {host}. "
            "Use the Postgres service reference, e.g. DATABASE_URL=${{Postgres.DATABASE_URL}}."
        )


def _db_url_diagnostics(database_url: str) -> str:
    parsed = urlparse(database_url)
    host = parsed.hostname or "<missing>"
    db_name = parsed.path.lstrip("/") or "<missing>"
    scheme = parsed.scheme or "<missing>"
    tip = "check network access, credentials and DB service status"
    if _is_localhost(host):
        tip = "host points to localhost; on Railway use the Postgres service reference"
    elif scheme != "sqlite" and "sslmode" not in parsed.query:
        tip = "no sslmode in URL query; managed databases often require sslmode=require"
    return f"scheme={scheme}, host={host}, port={parsed.port or '<missing>'}, database={db_name}; tip={tip}"


def _validate_required_env_for_runtime() -> None:
    errors = []
    warnings = []
    is_railway = _is_railway_runtime()

    jwt_secret = settings.JWT_SECRET.strip()
    if not jwt_secret:
        errors.append("JWT_SECRET is required.")
    elif is_railway and jwt_secret == "change-me-in-production":
        errors.append("JWT_SECRET uses the insecure default value in Railway runtime.")

    if not _is_http_url(settings.BASE_URL):
        errors.append("BASE_URL must be an absolute http(s) URL, e.g. https://shop.example.com")

    origins = _get_cors_origins(settings.CORS_ORIGINS)
    if not origins:
        errors.append("CORS_ORIGINS must contain at least one comma-separated origin URL.")
    else:
        invalid_origins = [origin for origin in origins if not _is_http_url(origin)]
        if invalid_origins:
            errors.append(f"CORS_ORIGINS contains invalid URL(s): {', '.join(invalid_origins)}")

    expiration_hours = settings.CHECKOUT_PENDING_PAYMENT_EXPIRATION_HOURS
    reminder_hours = settings.CHECKOUT_PENDING_PAYMENT_REMINDER_HOURS
    if expiration_hours <= 0:
        errors.append("CHECKOUT_PENDING_PAYMENT_EXPIRATION_HOURS must be positive.")
    elif reminder_hours >= expiration_hours:
        warnings.append(
            f"CHECKOUT_PENDING_PAYMENT_REMINDER_HOURS ({reminder_hours}) is not below the expiration window "
            f"({expiration_hours}h); reminders will never be sent."
        )

    if settings.MERCADOPAGO_ACCESS_TOKEN:
        if not settings.MERCADOPAGO_WEBHOOK_SECRET:
            warnings.append("MERCADOPAGO_WEBHOOK_SECRET is not set; webhook signatures will not be verified.")
        notification_url = settings.MERCADOPAGO_NOTIFICATION_URL
        if notification_url and not _is_http_url(notification_url):
            errors.append("MERCADOPAGO_NOTIFICATION_URL must be an absolute http(s) URL.")
        elif is_railway and _is_localhost(urlparse(notification_url).hostname):
            errors.append("MERCADOPAGO_NOTIFICATION_URL points to localhost; Mercado Pago cannot reach it.")

    if warnings:
        logger.warning("Startup environment warnings: %s", " | ".join(warnings))

    if errors:
        raise RuntimeError("Startup environment validation failed: " + " | ".join(errors))


@asynccontextmanager
async def lifespan(app: FastAPI):
    database_url = "<unavailable>"
    logger.info("Application startup initiated.")
    try:
        database_url = settings.DATABASE_URL
        logger.info("DATABASE_URL diagnostics at startup: %s", _db_url_diagnostics(database_url))
        _validate_database_url_for_runtime(database_url)
        _validate_required_env_for_runtime()
        init_db()
    except Exception as exc:
        diagnostics = (
            _db_url_diagnostics(database_url)
            if database_url != "<unavailable>"
            else "DATABASE_URL unavailable (missing or unreadable)."
        )
        logger.exception(
            "Database initialization failed: %s. DATABASE_URL diagnostics: %s",
            str(exc),
            diagnostics,
        )
        raise
    if not settings.MERCADOPAGO_ACCESS_TOKEN:
        logger.warning("MERCADOPAGO_ACCESS_TOKEN is not set, online payments are disabled")
    logger.info("Application startup completed successfully.")
    yield


app = FastAPI(
    title="Storefront API",
    description=(
        "Storefront backend: cart, checkout, orders and Mercado Pago payments. "
        "Use **Authorize** with a bearer JWT for protected endpoints (Orders, Admin)."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Cart", "description": "Cart items and coupons (user or X-Session-Id guest cart)."},
        {"name": "Checkout", "description": "Place an order from the cart."},
        {"name": "Orders", "description": "Read, cancel and pay my orders (requires auth)."},
        {"name": "Admin", "description": "Order status changes and stock adjustments (admin only)."},
        {"name": "Webhooks", "description": "Called by Mercado Pago."},
    ],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.operational:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.error_code, exc.message)
    else:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.error_code, exc.message)

    error = {"code": exc.error_code, "message": exc.message}
    if settings.APP_DEBUG:
        error["details"] = exc.public_metadata()
    elif exc.operational and exc.error_code in {"VALIDATION_ERROR", "CART_VALIDATION_FAILED"}:
        error["details"] = exc.public_metadata()
    return JSONResponse(status_code=exc.http_status, content={"success": False, "error": error})


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema
    from fastapi.openapi.utils import get_openapi

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        **openapi_schema.get("components", {}).get("securitySchemes", {}),
        "bearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
            "description": "JWT issued by the identity service",
        },
    }
    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_cors_origins(settings.CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(cart.router, prefix="/api/cart", tags=["Cart"])
app.include_router(checkout.router, prefix="/api/checkout", tags=["Checkout"])
app.include_router(order.router, prefix="/api/orders", tags=["Orders"])
app.include_router(admin_orders.router, prefix="/api/admin", tags=["Admin"])
app.include_router(mercadopago_webhook.router, prefix="/webhooks", tags=["Webhooks"])


@app.get("/")
def root():
    return {"status": "ok", "service": "Storefront API"}


@app.get("/health")
def health():
    return {"status": "ok"}
