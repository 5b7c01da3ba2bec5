"""Channel model for cached YouTube channels."""

from sqlalchemy import BigInteger, Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class Channel(Base):
    """YouTube channel cached locally and shared across audits."""

    __tablename__ = "channels"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    youtube_channel_id = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False, default="")
    description = Column(Text, nullable=True)
    custom_url = Column(String, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    uploads_playlist_id = Column(String, nullable=True)
    subscriber_count = Column(BigInteger, default=0)
    total_view_count = Column(BigInteger, default=0)
    video_count = Column(Integer, default=0)
    size_tier = Column(String, nullable=True, index=True)  # emerging, growing, established, major, elite
    category_id = Column(String, nullable=True, index=True)  # Peer category for scoped benchmarks
    created_via = Column(String, default="audit")  # audit, manual, competitor_import
    sync_enabled = Column(Boolean, default=True)  # Eligible as a benchmark peer
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    videos = relationship("Video", back_populates="channel", cascade="all, delete-orphan")
