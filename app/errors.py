"""Error taxonomy for the order and payment core.

Every error carries a stable ``error_code``, the HTTP status the API layer
answers with, and an ``operational`` flag. Operational errors are expected
outcomes of user input or order state and are not logged as failures.
"""

from typing import Any


SENSITIVE_METADATA_KEYS = {"password", "token", "secret", "key", "authorization", "cookie"}


class AppError(Exception):
    """Base exception for all storefront errors."""

    error_code = "APP_ERROR"
    http_status = 500
    operational = False
    retryable = False

    def __init__(self, message: str, metadata: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.metadata = dict(metadata or {})

    def public_metadata(self) -> dict[str, Any]:
        return {
            key: value
            for key, value in self.metadata.items()
            if key.lower() not in SENSITIVE_METADATA_KEYS
        }


class EntityNotFoundError(AppError):
    error_code = "ENTITY_NOT_FOUND"
    http_status = 404
    operational = True

    def __init__(self, entity: str, identifier: Any = None):
        self.entity = entity
        self.identifier = identifier
        metadata: dict[str, Any] = {"entity": entity}
        if identifier is not None:
            metadata["identifier"] = identifier
        super().__init__(f"{entity} not found", metadata)


class BusinessRuleError(AppError):
    error_code = "BUSINESS_RULE_VIOLATION"
    http_status = 422
    operational = True

    def __init__(self, message: str, error_code: str | None = None, metadata: dict[str, Any] | None = None):
        super().__init__(message, metadata)
        if error_code:
            self.error_code = error_code


class InvalidOperationError(BusinessRuleError):
    """The order exists but the action is not permitted in its current state."""

    error_code = "INVALID_OPERATION"
    http_status = 409


class InsufficientStockError(BusinessRuleError):
    error_code = "INSUFFICIENT_STOCK"

    def __init__(self, product_name: str, requested: int, available: int):
        self.product_name = product_name
        self.requested = requested
        self.available = available
        if available > 0:
            message = f"Only {available} left in stock for {product_name}"
        else:
            message = f"{product_name} is out of stock"
        super().__init__(
            message,
            metadata={"product": product_name, "requested": requested, "available": available},
        )


class InvalidCouponError(BusinessRuleError):
    error_code = "INVALID_COUPON"


class CouponAlreadyUsedError(BusinessRuleError):
    error_code = "COUPON_ALREADY_USED"
    http_status = 409


class ValidationError(AppError):
    """Structured field-level validation failure."""

    error_code = "VALIDATION_ERROR"
    http_status = 422
    operational = True

    def __init__(self, message: str, errors: dict[str, list[str]] | None = None):
        self.errors = dict(errors or {})
        super().__init__(message, {"errors": self.errors})


class PaymentFailedError(AppError):
    """Gateway failure surfaced to the shopper without gateway detail."""

    error_code = "PAYMENT_FAILED"
    http_status = 422
    operational = True

    def __init__(self, reason: str | None = None, metadata: dict[str, Any] | None = None, retryable: bool = False):
        self.reason = reason
        self.retryable = retryable
        super().__init__(
            "The payment could not be processed. Please try again later.",
            {"reason": reason, **(metadata or {})},
        )

    def public_metadata(self) -> dict[str, Any]:
        return {}


class RefundFailedError(PaymentFailedError):
    """Gateway refused a refund. Refunds are recorded by hand today, so only
    gateway-backed refund integrations raise this."""

    error_code = "REFUND_FAILED"


class ShippingCreationError(AppError):
    """Carrier rejected a shipment. Reserved for carrier integrations; the
    carrier reason stays in metadata."""

    error_code = "SHIPPING_CREATION_FAILED"
    http_status = 422
    operational = True

    def __init__(self, reason: str | None = None):
        super().__init__("The shipment could not be created.", {"reason": reason})

    def public_metadata(self) -> dict[str, Any]:
        return {}


class GatewayError(AppError):
    """Transport or API failure talking to a payment gateway."""

    error_code = "GATEWAY_ERROR"
    http_status = 502

    def __init__(self, message: str, status_code: int | None = None, metadata: dict[str, Any] | None = None):
        self.status_code = status_code
        super().__init__(message, {"status_code": status_code, **(metadata or {})})


class GatewayTimeoutError(GatewayError):
    error_code = "GATEWAY_TIMEOUT"
    http_status = 504
    retryable = True


class GatewayUnavailableError(GatewayError):
    error_code = "GATEWAY_UNAVAILABLE"
    http_status = 503
    retryable = True


class GatewayRequestError(GatewayError):
    error_code = "GATEWAY_REQUEST_REJECTED"


class OrderLockedError(AppError):
    error_code = "ORDER_LOCKED"
    http_status = 409
    operational = True
    retryable = True

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} is being updated, try again", {"order_id": order_id})


class WebhookPayloadError(AppError):
    """Malformed gateway notification; acknowledged and never retried."""

    error_code = "INVALID_WEBHOOK_PAYLOAD"
    http_status = 400
    operational = True
