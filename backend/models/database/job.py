"""
Job model - Durable unit of pipeline work
"""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from database import Base


class Job(Base):
    """One stage of work for a batch (batch-level stages) or a single clip"""

    __tablename__ = "jobs"
    __table_args__ = (Index("ix_jobs_status_created_at", "status", "created_at"),)

    id = Column(Integer, primary_key=True, index=True)
    batch_id = Column(String(36), ForeignKey("batches.id"), nullable=False, index=True)
    clip_id = Column(String(36), ForeignKey("clips.id"), nullable=True, index=True)
    type = Column(String(20), nullable=False)  # research, compile, tts, video, assemble, image, image_compile
    payload_json = Column(JSON, default={})
    status = Column(String(20), nullable=False, default="queued")  # queued, running, done, failed
    attempts = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    locked_at = Column(DateTime, nullable=True)  # claim timestamp
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    batch = relationship("Batch", back_populates="jobs")
    clip = relationship("Clip", back_populates="jobs")
