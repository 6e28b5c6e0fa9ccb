"""
Merchant webhook endpoints and their delivery log.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from subgate.db.base import Base, JSONType


class Webhook(Base):
    __tablename__ = "webhooks"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    merchant_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    url = Column(String, nullable=False)
    secret = Column(String, nullable=False)  # HMAC-SHA256 signing key
    events = Column(JSONType, nullable=False, default=list)  # ["payment.confirmed", ...]
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    def listens_to(self, event: str) -> bool:
        return event in (self.events or [])


class WebhookDelivery(Base):
    __tablename__ = "webhook_deliveries"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    webhook_id = Column(String, ForeignKey("webhooks.id"), nullable=False, index=True)
    event_type = Column(String, nullable=False)
    payload = Column(JSONType, nullable=True)
    response_status = Column(Integer, nullable=False, default=0)  # 0 = transport error
    response_body = Column(Text, nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)  # NULL when the POST never completed
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
