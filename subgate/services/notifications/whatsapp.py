"""
WhatsApp sender over the WhatsApp Cloud API (graph.facebook.com).
"""
import logging

import httpx

from subgate.core.config import settings
from subgate.services.notifications.base import MessageContent, SendResult, normalize_phone


logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"


class WhatsAppSender:
    channel = "whatsapp"

    def __init__(self, access_token: str | None = None, phone_number_id: str | None = None) -> None:
        self._access_token = settings.whatsapp_access_token if access_token is None else access_token
        self._phone_number_id = settings.whatsapp_phone_number_id if phone_number_id is None else phone_number_id
        self._client: httpx.Client | None = None

    @property
    def enabled(self) -> bool:
        return bool(self._access_token and self._phone_number_id)

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=settings.http_client_timeout)
        return self._client

    def send(self, recipient: str, content: MessageContent) -> SendResult:
        if not self.enabled:
            return SendResult(success=False, error="WhatsApp not configured")
        # Cloud API wants digits only, no leading "+".
        to = normalize_phone(recipient, settings.default_country_code).lstrip("+")
        url = f"{GRAPH_API_BASE}/{settings.whatsapp_api_version}/{self._phone_number_id}/messages"
        try:
            resp = self.client.post(
                url,
                headers={"Authorization": f"Bearer {self._access_token}"},
                json={
                    "messaging_product": "whatsapp",
                    "recipient_type": "individual",
                    "to": to,
                    "type": "text",
                    "text": {"body": content.text},
                },
            )
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("whatsapp_send_failed", extra={"error": str(e), "recipient": to})
            return SendResult(success=False, error=str(e))
        messages = data.get("messages") or []
        if messages and messages[0].get("id"):
            return SendResult(success=True, message_id=messages[0]["id"])
        return SendResult(success=False, error=(data.get("error") or {}).get("message") or "Unknown error")

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
