"""Audit model for channel audits."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class Audit(Base):
    """One run of the channel audit pipeline."""

    __tablename__ = "audits"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    channel_reference = Column(String, nullable=False)  # Raw URL, handle or channel ID
    youtube_channel_id = Column(String, nullable=True, index=True)
    channel_id = Column(String, ForeignKey("channels.id", ondelete="SET NULL"), nullable=True, index=True)
    audit_type = Column(String, nullable=False)  # prospect, client_baseline
    status = Column(String, nullable=False, default="created", index=True)  # created, running, completed, failed
    progress = Column(JSON, nullable=False, default=lambda: {"step": "created", "pct": 0, "message": ""})
    config = Column(JSON, nullable=False, default=dict)

    # Results, populated as stages complete
    channel_snapshot = Column(JSON, nullable=True)
    series_summary = Column(JSON, nullable=True)
    benchmark_data = Column(JSON, nullable=True)
    opportunities = Column(JSON, nullable=True)
    recommendations = Column(JSON, nullable=True)
    executive_summary = Column(Text, nullable=True)
    videos = Column(JSON, nullable=True)

    # Cost tracking
    total_tokens = Column(Integer, nullable=False, default=0)
    total_cost = Column(Numeric(10, 6), nullable=False, default=0)
    youtube_api_calls = Column(Integer, nullable=False, default=0)

    error_message = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    sections = relationship(
        "AuditSection",
        back_populates="audit",
        cascade="all, delete-orphan",
        order_by="AuditSection.position",
    )
    channel = relationship("Channel")
