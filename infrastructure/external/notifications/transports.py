"""
Notification transports: where a claimed outbox row is delivered.
"""
from __future__ import annotations

from typing import Optional

import httpx

from core.logging_config import get_logger
from domain.notification.entity import NotificationLog

logger = get_logger(__name__)


class LogTransport:
    """Writes the notification to the structured log."""

    name = "log"

    async def send(self, notification: NotificationLog) -> None:
        logger.info(
            "customer_notification",
            notification_id=notification.id,
            order_id=notification.order_id,
            event_kind=notification.event_kind.value,
            recipient=notification.recipient,
            payload=notification.payload,
        )


class WebhookTransport:
    """POSTs the notification as JSON; any non-2xx answer is a failure."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = url
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)

    async def send(self, notification: NotificationLog) -> None:
        response = await self._client.post(
            self._url,
            json={
                "id": notification.id,
                "order_id": notification.order_id,
                "event": notification.event_kind.value,
                "recipient": notification.recipient,
                "payload": notification.payload,
            },
        )
        response.raise_for_status()

    async def aclose(self) -> None:
        await self._client.aclose()
