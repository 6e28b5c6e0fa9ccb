"""
Subscription: a customer's entitlement to one product, keyed by phone.
Entitling iff status == "active" and current_period_end >= now.
renewal_reminder_sent_at / expiry_notice_sent_at are notification watermarks:
a sweep claims a row by setting them, so a notice goes out once per period.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Index, String

from subgate.db.base import Base


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("ix_subscriptions_entitlement", "customer_phone", "product_id", "status"),
        Index("ix_subscriptions_status_period_end", "status", "current_period_end"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    merchant_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    product_id = Column(String, ForeignKey("products.id"), nullable=False)
    price_id = Column(String, ForeignKey("prices.id"), nullable=True)
    payment_id = Column(String, nullable=True)
    customer_phone = Column(String, nullable=False)
    customer_email = Column(String, nullable=True)
    status = Column(String, nullable=False, default="active")  # active / past_due / expired / cancelled / trialing
    current_period_start = Column(DateTime(timezone=True), nullable=False)
    current_period_end = Column(DateTime(timezone=True), nullable=False)
    trial_end = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    renewal_reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    expiry_notice_sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
