"""
Fan-out of one notification to every channel the recipient can be reached on.

Each channel call is isolated: a provider outage (or an unexpected exception
from a sender) is logged and reported in DispatchOutcome.errors, and the
remaining channels still run. Channels whose sender is not configured are
skipped silently. No retries.
"""
from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from subgate.services.notifications.base import MessageContent, Sender, SendResult
from subgate.services.notifications.email import EmailSender
from subgate.services.notifications.sms import SmsSender
from subgate.services.notifications.whatsapp import WhatsAppSender
from subgate.utils.metrics import notifications_total

logger = logging.getLogger(__name__)


class Notification(BaseModel):
    recipient_type: str  # customer / merchant
    event: str           # renewal_reminder / expiration_notice / payment_confirmed
    content: MessageContent
    email: str | None = None
    phone: str | None = None

    model_config = {"frozen": True}


class DispatchOutcome(BaseModel):
    sent: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return bool(self.sent)


class NotificationDispatcher:
    def __init__(
        self,
        email: Sender | None = None,
        sms: Sender | None = None,
        whatsapp: Sender | None = None,
    ) -> None:
        self.email = email
        self.sms = sms
        self.whatsapp = whatsapp

    @classmethod
    def from_settings(cls) -> "NotificationDispatcher":
        return cls(email=EmailSender(), sms=SmsSender(), whatsapp=WhatsAppSender())

    def _routes(self, notification: Notification) -> list[tuple[Sender, str]]:
        routes: list[tuple[Sender | None, str | None]] = [
            (self.email, notification.email),
            (self.sms, notification.phone),
            (self.whatsapp, notification.phone),
        ]
        return [(sender, recipient) for sender, recipient in routes if sender is not None and recipient]

    def dispatch(self, notification: Notification) -> DispatchOutcome:
        outcome = DispatchOutcome()
        for sender, recipient in self._routes(notification):
            channel = sender.channel
            if not sender.enabled:
                notifications_total.labels(channel=channel, status="skipped").inc()
                continue
            try:
                result = sender.send(recipient, notification.content)
            except Exception as e:
                # Senders promise not to raise; a broken one must not stop the fan-out.
                logger.exception(
                    "notification_sender_crashed",
                    extra={"channel": channel, "recipient": recipient},
                )
                result = SendResult(success=False, error=str(e) or type(e).__name__)
            if result.success:
                notifications_total.labels(channel=channel, status="sent").inc()
                outcome.sent.append(channel)
                continue
            notifications_total.labels(channel=channel, status="failed").inc()
            logger.warning(
                "notification_failed",
                extra={
                    "channel": channel,
                    "recipient": recipient,
                    "error": result.error,
                    "kind": notification.event,
                },
            )
            outcome.errors.append(f"{channel}:{recipient}: {result.error}")
        return outcome

    def close(self) -> None:
        for sender in (self.email, self.sms, self.whatsapp):
            close = getattr(sender, "close", None)
            if close is not None:
                close()
