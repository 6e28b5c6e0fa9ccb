"""
Sender contract shared by every outbound channel.
Senders never raise: every failure becomes SendResult(success=False).
"""
from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel


class SendResult(BaseModel):
    success: bool
    message_id: str | None = None
    error: str | None = None

    model_config = {"frozen": True}


class MessageContent(BaseModel):
    """Rendered message. subject/html are used by email, text by SMS/WhatsApp."""

    subject: str
    text: str
    html: str | None = None

    model_config = {"frozen": True}


class Sender(Protocol):
    channel: str

    @property
    def enabled(self) -> bool: ...

    def send(self, recipient: str, content: MessageContent) -> SendResult: ...


def normalize_phone(phone: str, country_code: str) -> str:
    """Strip spaces and punctuation, add +<country_code> to local numbers."""
    normalized = "".join(ch for ch in phone if ch.isdigit() or ch == "+")
    if normalized.startswith("+"):
        return normalized
    if normalized.startswith("0"):
        return f"+{country_code}{normalized[1:]}"
    if normalized.startswith(country_code):
        return f"+{normalized}"
    return f"+{country_code}{normalized}"
