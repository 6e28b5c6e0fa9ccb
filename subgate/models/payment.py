"""
Payment: a claimed off-platform transfer, confirmed manually by the merchant.
reference_code is what the customer writes in the transfer comment.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Text

from subgate.db.base import Base


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    merchant_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    price_id = Column(String, ForeignKey("prices.id"), nullable=False)
    customer_phone = Column(String, nullable=False)
    customer_email = Column(String, nullable=True)
    reference_code = Column(String, unique=True, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String, nullable=False, default="SSP")
    payment_method = Column(String, nullable=False, default="mobile_money")  # mobile_money / bank_transfer
    status = Column(String, nullable=False, default="pending")  # pending / matched / confirmed / failed / expired
    transaction_id = Column(String, nullable=True)
    matched_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    confirmed_by = Column(String, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
