import logging

import requests

from app.config import settings

logger = logging.getLogger(__name__)

ADMIN_CHANNEL = "admin.orders"


def order_channels(user_id: int | None) -> list[str]:
    channels = [ADMIN_CHANNEL]
    if user_id is not None:
        channels.insert(0, f"orders.{user_id}")
    return channels


def broadcast(channels: list[str], event: str, data: dict) -> bool:
    """Push an event to the real-time relay. Returns False when none is configured."""
    if not settings.BROADCAST_URL:
        logger.debug("BROADCAST_URL is not set, skipping %s broadcast", event)
        return False

    headers = {"Content-Type": "application/json"}
    if settings.BROADCAST_TOKEN:
        headers["Authorization"] = f"Bearer {settings.BROADCAST_TOKEN}"

    response = requests.post(
        settings.BROADCAST_URL,
        json={"channels": channels, "event": event, "data": data},
        headers=headers,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
    )
    response.raise_for_status()
    logger.info("Broadcast %s to %s", event, ", ".join(channels))
    return True
