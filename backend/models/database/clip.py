"""
Clip model - One variant within a batch
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base


class Clip(Base):
    """A single video or image variant and the artifacts produced for it"""

    __tablename__ = "clips"
    __table_args__ = (UniqueConstraint("batch_id", "variant_id", name="uq_clips_batch_variant"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    batch_id = Column(String(36), ForeignKey("batches.id"), nullable=False, index=True)
    variant_id = Column(String(10), nullable=False)  # V01, V02, ...
    preset_key = Column(String(50), nullable=True)

    # Internal status drives branching, ui_state drives display
    status = Column(String(20), nullable=False, default="planned", index=True)
    ui_state = Column(String(30), nullable=False, default="queued")
    ui_message = Column(Text, nullable=True)
    ui_started_at = Column(DateTime, nullable=True)
    ui_last_progress_at = Column(DateTime, nullable=True)

    # Video artifacts
    script_spoken = Column(Text, nullable=True)
    on_screen_text_json = Column(JSON, nullable=True)
    video_prompt = Column(Text, nullable=True)
    voice_url = Column(Text, nullable=True)
    raw_video_url = Column(Text, nullable=True)
    final_url = Column(Text, nullable=True)
    provider = Column(String(50), nullable=True)
    provider_task_id = Column(String(255), nullable=True)

    # Image artifacts
    image_prompt = Column(Text, nullable=True)
    image_type = Column(String(20), nullable=True)
    aspect_ratio = Column(String(10), nullable=True)
    image_url = Column(Text, nullable=True)

    # Review flags, set by the user only
    winner = Column(Boolean, default=False, nullable=False)
    killed = Column(Boolean, default=False, nullable=False)

    error = Column(Text, nullable=True)
    charged_state = Column(String(20), nullable=False, default="unknown")
    refunded = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    batch = relationship("Batch", back_populates="clips")
    jobs = relationship("Job", back_populates="clip")
