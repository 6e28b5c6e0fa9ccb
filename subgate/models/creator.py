"""
Creator: public profile of a merchant under which content is published.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text

from subgate.db.base import Base


class Creator(Base):
    __tablename__ = "creators"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, ForeignKey("users.id"), unique=True, nullable=False)
    username = Column(String, unique=True, nullable=False, index=True)
    display_name = Column(String, nullable=False)
    bio = Column(Text, nullable=True)
    # NULL = premium (community is gated unless explicitly opened).
    community_is_premium = Column(Boolean, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    @property
    def community_premium(self) -> bool:
        return self.community_is_premium is not False
