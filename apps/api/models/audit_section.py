"""AuditSection model for per-stage audit progress."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import relationship
import uuid

from database import Base


class AuditSection(Base):
    """Execution record of one pipeline stage within an audit."""

    __tablename__ = "audit_sections"
    __table_args__ = (UniqueConstraint("audit_id", "section_key", name="uq_audit_sections_audit_key"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    audit_id = Column(String, ForeignKey("audits.id", ondelete="CASCADE"), nullable=False, index=True)
    section_key = Column(String, nullable=False)
    position = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="pending")  # pending, running, completed, failed
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(String, nullable=True)
    result_data = Column(JSON, nullable=True)

    # Relationships
    audit = relationship("Audit", back_populates="sections")
