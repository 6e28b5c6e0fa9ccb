from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String

from subgate.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    email = Column(String, unique=True, nullable=False)
    full_name = Column(String, nullable=True)
    phone = Column(String, nullable=True, index=True)   # used when a viewer supplies no phone
    role = Column(String, nullable=False, default="customer")  # merchant / customer / admin
    business_name = Column(String, nullable=True)
    # Denormalised current platform plan; falls back to the free plan on expiry.
    platform_plan_id = Column(String, ForeignKey("platform_plans.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
