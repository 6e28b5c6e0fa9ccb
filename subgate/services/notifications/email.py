"""
Email sender over the Resend HTTP API (httpx sync client).
"""
import logging

import httpx

from subgate.core.config import settings
from subgate.services.notifications.base import MessageContent, SendResult


logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


class EmailSender:
    channel = "email"

    def __init__(self, api_key: str | None = None, sender: str | None = None) -> None:
        self._api_key = settings.resend_api_key if api_key is None else api_key
        self._from = sender or settings.email_from
        self._client: httpx.Client | None = None

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=settings.http_client_timeout)
        return self._client

    def send(self, recipient: str, content: MessageContent) -> SendResult:
        if not self.enabled:
            return SendResult(success=False, error="Email not configured")
        try:
            resp = self.client.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "from": self._from,
                    "to": [recipient],
                    "subject": content.subject,
                    "html": content.html or content.text,
                    "text": content.text,
                },
            )
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("email_send_failed", extra={"error": str(e), "recipient": recipient})
            return SendResult(success=False, error=str(e))
        if resp.is_success and data.get("id"):
            return SendResult(success=True, message_id=data["id"])
        return SendResult(success=False, error=data.get("message") or f"HTTP {resp.status_code}")

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
