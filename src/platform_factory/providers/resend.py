"""ResendNotifier: sends the tenant welcome email through Resend."""

from __future__ import annotations

import logging

import httpx

from ..provisioning.models import NotificationReceipt, WelcomeMessage
from ..settings import FactorySettings
from .errors import ProviderError
from .http import ProviderHTTPClient

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com"


class ResendNotifier:
    def __init__(
        self,
        settings: FactorySettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        base_url: str = RESEND_API_URL,
    ) -> None:
        if not settings.resend_api_key:
            raise ValueError("resend_api_key is required")
        self._sender = settings.notify_from
        self._api = ProviderHTTPClient(
            provider="resend",
            base_url=base_url,
            headers={"Authorization": f"Bearer {settings.resend_api_key}"},
            http_client=http_client,
            timeout_seconds=settings.http_timeout_seconds,
            max_retries=settings.http_max_retries,
        )

    async def send(self, message: WelcomeMessage) -> NotificationReceipt:
        body = await self._api.request_json(
            "POST",
            "/emails",
            json={
                "from": self._sender,
                "to": [message.recipient],
                "subject": message.subject,
                "html": message.html,
                "text": message.text,
            },
        )
        message_id = (body or {}).get("id")
        if not message_id:
            raise ProviderError("resend", 0, "send response missing id")
        logger.info(
            "Welcome email sent: id=%s",
            message_id,
            extra={"message_id": message_id},
        )
        return NotificationReceipt(recipient=message.recipient, message_id=message_id)
