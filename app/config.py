import os
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


class Settings:
    @staticmethod
    def _get_int(name: str, default: int) -> int:
        return int(os.getenv(name, str(default)))

    @staticmethod
    def _get_bool(name: str, default: bool) -> bool:
        raw = os.getenv(name)
        if raw is None or raw.strip() == "":
            return default
        return raw.strip().lower() in {"1", "true", "yes", "on"}

    @staticmethod
    def _get_decimal(name: str, default: str) -> Decimal:
        return Decimal(os.getenv(name, default))

    @property
    def APP_NAME(self) -> str:
        return os.getenv("APP_NAME", "Storefront")

    @property
    def APP_DEBUG(self) -> bool:
        return self._get_bool("APP_DEBUG", False)

    @property
    def BASE_URL(self) -> str:
        return os.getenv("BASE_URL", "http://localhost:8000")

    @property
    def FRONTEND_URL(self) -> str:
        return os.getenv("FRONTEND_URL", "http://localhost:3000")

    @property
    def DATABASE_URL(self) -> str:
        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL is required")
        return database_url

    @property
    def DB_CONNECT_RETRIES(self) -> int:
        return self._get_int("DB_CONNECT_RETRIES", 10)

    @property
    def DB_CONNECT_RETRY_DELAY_SECONDS(self) -> int:
        return self._get_int("DB_CONNECT_RETRY_DELAY_SECONDS", 2)

    @property
    def JWT_SECRET(self) -> str:
        return os.getenv("JWT_SECRET", "change-me-in-production")

    @property
    def JWT_ALGORITHM(self) -> str:
        return os.getenv("JWT_ALGORITHM", "HS256")

    @property
    def CORS_ORIGINS(self) -> str:
        return os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:3001")

    # Checkout policy

    @property
    def CURRENCY(self) -> str:
        return os.getenv("CURRENCY", "ARS")

    @property
    def CHECKOUT_PENDING_PAYMENT_EXPIRATION_HOURS(self) -> int:
        return self._get_int("CHECKOUT_PENDING_PAYMENT_EXPIRATION_HOURS", 24)

    @property
    def CHECKOUT_PENDING_PAYMENT_REMINDER_HOURS(self) -> int:
        return self._get_int("CHECKOUT_PENDING_PAYMENT_REMINDER_HOURS", 12)

    @property
    def CART_SESSION_TTL_DAYS(self) -> int:
        return self._get_int("CART_SESSION_TTL_DAYS", 7)

    @property
    def TAX_ENABLED(self) -> bool:
        return self._get_bool("TAX_ENABLED", False)

    @property
    def TAX_INCLUDED_IN_PRICES(self) -> bool:
        return self._get_bool("TAX_INCLUDED_IN_PRICES", True)

    @property
    def TAX_RATE(self) -> Decimal:
        return self._get_decimal("TAX_RATE", "21")

    @property
    def FREE_SHIPPING_THRESHOLD(self) -> Decimal:
        return self._get_decimal("FREE_SHIPPING_THRESHOLD", "0")

    @property
    def ORDER_LOCK_RETRIES(self) -> int:
        return self._get_int("ORDER_LOCK_RETRIES", 3)

    # Mercado Pago

    @property
    def MERCADOPAGO_ACCESS_TOKEN(self) -> str:
        return os.getenv("MERCADOPAGO_ACCESS_TOKEN", "")

    @property
    def MERCADOPAGO_WEBHOOK_SECRET(self) -> str:
        return os.getenv("MERCADOPAGO_WEBHOOK_SECRET", "")

    @property
    def MERCADOPAGO_API_URL(self) -> str:
        return os.getenv("MERCADOPAGO_API_URL", "https://api.mercadopago.com")

    @property
    def MERCADOPAGO_SANDBOX(self) -> bool:
        return self._get_bool("MERCADOPAGO_SANDBOX", True)

    @property
    def MERCADOPAGO_SUCCESS_URL(self) -> str:
        return os.getenv("MERCADOPAGO_SUCCESS_URL", "http://localhost:3000/checkout/success")

    @property
    def MERCADOPAGO_FAILURE_URL(self) -> str:
        return os.getenv("MERCADOPAGO_FAILURE_URL", "http://localhost:3000/checkout/failure")

    @property
    def MERCADOPAGO_PENDING_URL(self) -> str:
        return os.getenv("MERCADOPAGO_PENDING_URL", "http://localhost:3000/checkout/pending")

    @property
    def MERCADOPAGO_NOTIFICATION_URL(self) -> str:
        return os.getenv(
            "MERCADOPAGO_NOTIFICATION_URL",
            f"{self.BASE_URL.rstrip('/')}/webhooks/mercadopago",
        )

    @property
    def MERCADOPAGO_CA_BUNDLE(self) -> str:
        return os.getenv("MERCADOPAGO_CA_BUNDLE", "")

    @property
    def GATEWAY_TIMEOUT_SECONDS(self) -> int:
        return self._get_int("GATEWAY_TIMEOUT_SECONDS", 10)

    @property
    def GATEWAY_MAX_RETRIES(self) -> int:
        return self._get_int("GATEWAY_MAX_RETRIES", 3)

    @property
    def GATEWAY_BACKOFF_SECONDS(self) -> float:
        return float(os.getenv("GATEWAY_BACKOFF_SECONDS", "0.5"))

    # Notifications

    @property
    def SMTP_HOST(self) -> str:
        return os.getenv("SMTP_HOST", "")

    @property
    def SMTP_PORT(self) -> int:
        return self._get_int("SMTP_PORT", 587)

    @property
    def SMTP_USER(self) -> str:
        return os.getenv("SMTP_USER", "")

    @property
    def SMTP_PASSWORD(self) -> str:
        return os.getenv("SMTP_PASSWORD", "")

    @property
    def SMTP_USE_TLS(self) -> bool:
        return self._get_bool("SMTP_USE_TLS", True)

    @property
    def SMTP_FROM_EMAIL(self) -> str:
        return os.getenv("SMTP_FROM_EMAIL", "")

    @property
    def SMTP_FROM_NAME(self) -> str:
        return os.getenv("SMTP_FROM_NAME", self.APP_NAME)

    @property
    def BROADCAST_URL(self) -> str:
        return os.getenv("BROADCAST_URL", "")

    @property
    def BROADCAST_TOKEN(self) -> str:
        return os.getenv("BROADCAST_TOKEN", "")

    @property
    def NOTIFICATION_MAX_ATTEMPTS(self) -> int:
        return self._get_int("NOTIFICATION_MAX_ATTEMPTS", 3)

    @property
    def JOB_RETRY_BACKOFF_SECONDS(self) -> int:
        return self._get_int("JOB_RETRY_BACKOFF_SECONDS", 60)

    @property
    def JOB_VISIBILITY_TIMEOUT_SECONDS(self) -> int:
        """A running job not finished within this window is handed out again."""
        return self._get_int("JOB_VISIBILITY_TIMEOUT_SECONDS", 900)

    @property
    def SWEEP_INTERVAL_SECONDS(self) -> int:
        return self._get_int("SWEEP_INTERVAL_SECONDS", 300)


settings = Settings()

# Validate critical settings
if settings.JWT_SECRET == "change-me-in-production":
    import warnings
    warnings.warn("JWT_SECRET is using default value. Change it in production!", UserWarning)
