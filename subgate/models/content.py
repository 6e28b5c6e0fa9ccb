"""
Gated content (posts, files, videos) and the append-only view log.
product_ids lists the products whose subscribers may see premium items.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from subgate.db.base import Base, JSONType


class ContentItem(Base):
    __tablename__ = "content_items"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    creator_id = Column(String, ForeignKey("creators.id"), nullable=False, index=True)
    slug = Column(String, nullable=True, index=True)
    title = Column(String, nullable=False)
    body = Column(Text, nullable=True)
    content_type = Column(String, nullable=False, default="post")  # post / file / video
    visibility = Column(String, nullable=False, default="premium")  # free / premium
    status = Column(String, nullable=False, default="draft")       # draft / published / archived
    product_ids = Column(JSONType, nullable=False, default=list)
    view_count = Column(Integer, nullable=False, default=0)
    download_count = Column(Integer, nullable=False, default=0)
    published_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    @property
    def is_free(self) -> bool:
        return self.visibility == "free"


class ContentView(Base):
    __tablename__ = "content_views"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    content_id = Column(String, ForeignKey("content_items.id"), nullable=False, index=True)
    creator_id = Column(String, nullable=False, index=True)
    viewer_user_id = Column(String, nullable=True)
    viewer_phone = Column(String, nullable=True)
    is_premium = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
