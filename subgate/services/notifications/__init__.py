"""
Outbound notifications: injected per-channel senders and a dispatcher that
isolates channel failures from each other.
"""
from subgate.services.notifications.base import MessageContent, SendResult, Sender
from subgate.services.notifications.dispatcher import (
    DispatchOutcome,
    Notification,
    NotificationDispatcher,
)

__all__ = [
    "DispatchOutcome",
    "MessageContent",
    "Notification",
    "NotificationDispatcher",
    "SendResult",
    "Sender",
]
