import smtplib
from email.message import EmailMessage

from app.config import settings
from app.models.order import Order


def is_configured() -> bool:
    return bool(settings.SMTP_HOST and settings.SMTP_FROM_EMAIL)


def _order_link(order: Order) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/orders/{order.id}"


def _send_email(to_email: str, subject: str, text_body: str, html_body: str | None = None) -> None:
    if not is_configured():
        raise RuntimeError("SMTP is not configured (SMTP_HOST and SMTP_FROM_EMAIL are required).")

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = f"{settings.SMTP_FROM_NAME} <{settings.SMTP_FROM_EMAIL}>"
    message["To"] = to_email
    message.set_content(text_body)
    if html_body:
        message.add_alternative(html_body, subtype="html")

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as smtp:
        smtp.ehlo()
        if settings.SMTP_USE_TLS:
            smtp.starttls()
            smtp.ehlo()
        if settings.SMTP_USER:
            smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        smtp.send_message(message)


def _send_order_email(order: Order, subject: str, lines: list[str]) -> None:
    name = order.shipping_name or "there"
    link = _order_link(order)
    text = f"Hi {name},\n\n" + "\n".join(lines) + f"\n\nOrder details: {link}\n"
    html = (
        f"<p>Hi {name},</p>"
        + "".join(f"<p>{line}</p>" for line in lines)
        + f"<p><a href=\"{link}\">View order {order.order_number}</a></p>"
    )
    _send_email(to_email=order.contact_email, subject=subject, text_body=text, html_body=html)


def send_order_confirmation(order: Order) -> None:
    _send_order_email(
        order,
        f"Order {order.order_number} received",
        [
            f"Thanks for your order {order.order_number}.",
            f"Total: {order.total} {order.currency}.",
            "We will let you know as soon as the payment is confirmed.",
        ],
    )


def send_order_paid(order: Order) -> None:
    _send_order_email(
        order,
        f"Payment confirmed for order {order.order_number}",
        [
            f"We received your payment of {order.total} {order.currency}.",
            "Your order is now being prepared.",
        ],
    )


def send_order_status_changed(order: Order, new_status: str) -> None:
    _send_order_email(
        order,
        f"Order {order.order_number} is now {new_status}",
        [f"The status of your order {order.order_number} changed to {new_status}."],
    )


def send_pending_payment_reminder(order: Order) -> None:
    _send_order_email(
        order,
        f"Your order {order.order_number} is waiting for payment",
        [
            f"We have not received the payment for order {order.order_number} yet.",
            f"Unpaid orders are cancelled after {settings.CHECKOUT_PENDING_PAYMENT_EXPIRATION_HOURS} hours.",
        ],
    )


def send_order_payment_expired(order: Order) -> None:
    _send_order_email(
        order,
        f"Order {order.order_number} was cancelled",
        [
            f"Your order {order.order_number} was cancelled because the payment was not received in time.",
            "You are welcome to place a new order at any time.",
        ],
    )
