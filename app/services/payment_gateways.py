from dataclasses import dataclass

from app.config import settings
from app.models.enums import PaymentMethod


@dataclass(frozen=True)
class PaymentGateway:
    method: str
    label: str
    online: bool
    enabled: bool


def get_payment_gateways() -> dict[str, PaymentGateway]:
    return {
        PaymentMethod.MERCADO_PAGO.value: PaymentGateway(
            method=PaymentMethod.MERCADO_PAGO.value,
            label="Mercado Pago",
            online=True,
            enabled=bool(settings.MERCADOPAGO_ACCESS_TOKEN),
        ),
        PaymentMethod.BANK_TRANSFER.value: PaymentGateway(
            method=PaymentMethod.BANK_TRANSFER.value,
            label="Bank transfer",
            online=False,
            enabled=True,
        ),
        PaymentMethod.CASH.value: PaymentGateway(
            method=PaymentMethod.CASH.value,
            label="Cash on delivery",
            online=False,
            enabled=True,
        ),
    }


def get_payment_gateway(method: str) -> PaymentGateway | None:
    return get_payment_gateways().get(method)
