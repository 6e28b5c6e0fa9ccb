"""
Platform billing: plans a merchant account can be on and its subscription to one.
Same lifecycle vocabulary as customer subscriptions, plus trials.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String

from subgate.db.base import Base, JSONType


class PlatformPlan(Base):
    __tablename__ = "platform_plans"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    slug = Column(String, unique=True, nullable=False)   # "free" is the fallback tier
    name = Column(String, nullable=False)
    price_monthly = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String, nullable=False, default="USD")
    # {"max_subscribers": 50, "api_access": false, "webhooks": false, "custom_branding": false}
    limits = Column(JSONType, nullable=False, default=dict)
    trial_days = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_order = Column(Integer, nullable=False, default=0)

    def allows(self, feature: str) -> bool:
        value = (self.limits or {}).get(feature)
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return value != 0
        return value is not None


class PlatformSubscription(Base):
    __tablename__ = "platform_subscriptions"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, unique=True)
    plan_id = Column(String, ForeignKey("platform_plans.id"), nullable=False)
    status = Column(String, nullable=False, default="trialing")  # active / trialing / past_due / cancelled / expired
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    trial_start = Column(DateTime(timezone=True), nullable=True)
    trial_end = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
