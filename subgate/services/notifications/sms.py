"""
SMS sender: Africa's Talking first, Twilio as fallback.
The first provider that is configured and accepts the message wins.
"""
import logging

import httpx

from subgate.core.config import settings
from subgate.services.notifications.base import MessageContent, SendResult, normalize_phone


logger = logging.getLogger(__name__)

AFRICAS_TALKING_URL = "https://api.africastalking.com/version1/messaging"
TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class AfricasTalkingProvider:
    name = "africastalking"

    def __init__(self, client: httpx.Client) -> None:
        self._client = client
        self._api_key = settings.at_api_key
        self._username = settings.at_username
        self._sender_id = settings.at_sender_id

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self._username)

    def send(self, to: str, message: str) -> SendResult:
        resp = self._client.post(
            AFRICAS_TALKING_URL,
            headers={"Accept": "application/json", "apiKey": self._api_key},
            data={"username": self._username, "to": to, "message": message, "from": self._sender_id},
        )
        data = resp.json()
        recipients = (data.get("SMSMessageData") or {}).get("Recipients") or []
        first = recipients[0] if recipients else {}
        if first.get("status") == "Success":
            return SendResult(success=True, message_id=first.get("messageId"))
        return SendResult(success=False, error=first.get("status") or "Unknown error")


class TwilioProvider:
    name = "twilio"

    def __init__(self, client: httpx.Client) -> None:
        self._client = client
        self._account_sid = settings.twilio_account_sid
        self._auth_token = settings.twilio_auth_token
        self._from_number = settings.twilio_from_number

    @property
    def configured(self) -> bool:
        return bool(self._account_sid and self._auth_token)

    def send(self, to: str, message: str) -> SendResult:
        resp = self._client.post(
            f"{TWILIO_API_BASE}/Accounts/{self._account_sid}/Messages.json",
            auth=(self._account_sid, self._auth_token),
            data={"To": to, "From": self._from_number, "Body": message},
        )
        data = resp.json()
        if data.get("sid"):
            return SendResult(success=True, message_id=data["sid"])
        return SendResult(success=False, error=data.get("message") or "Unknown error")


class SmsSender:
    channel = "sms"

    def __init__(self, providers: list | None = None) -> None:
        self._client: httpx.Client | None = None
        self._providers = providers

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=settings.http_client_timeout)
        return self._client

    @property
    def providers(self) -> list:
        if self._providers is None:
            self._providers = [AfricasTalkingProvider(self.client), TwilioProvider(self.client)]
        return self._providers

    @property
    def enabled(self) -> bool:
        return any(p.configured for p in self.providers)

    def send(self, recipient: str, content: MessageContent) -> SendResult:
        to = normalize_phone(recipient, settings.default_country_code)
        errors = []
        for provider in self.providers:
            if not provider.configured:
                continue
            try:
                result = provider.send(to, content.text)
            except (httpx.HTTPError, ValueError) as e:
                result = SendResult(success=False, error=str(e))
            if result.success:
                return result
            logger.warning(
                "sms_provider_failed",
                extra={"channel": provider.name, "error": result.error, "recipient": to},
            )
            errors.append(f"{provider.name}: {result.error}")
        if not errors:
            return SendResult(success=False, error="SMS not configured")
        return SendResult(success=False, error="; ".join(errors))

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
