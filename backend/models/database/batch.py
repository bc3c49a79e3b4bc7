"""
Batch model - One user generation request
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship

from database import Base


class Batch(Base):
    """A generation request producing several independent variants"""

    __tablename__ = "batches"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String(100), nullable=True, index=True)
    intent_text = Column(Text, nullable=False)
    preset_key = Column(String(50), nullable=False)  # as requested, e.g. AUTO
    resolved_preset_key = Column(String(50), nullable=False)
    mode = Column(String(20), nullable=False)  # hook_test, angle_test, format_test
    batch_size = Column(Integer, nullable=False)
    output_type = Column(String(10), nullable=False, default="video")
    status = Column(String(20), nullable=False, default="queued", index=True)

    # Billing, fixed at creation
    quality_mode = Column(String(20), nullable=False, default="balanced")
    base_cost_cents = Column(Integer, nullable=False, default=0)
    user_charge_cents = Column(Integer, nullable=False, default=0)
    refunded_cents = Column(Integer, nullable=False, default=0)
    payment_status = Column(String(20), nullable=False, default="pending")

    research_json = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    clips = relationship(
        "Clip", back_populates="batch", cascade="all, delete-orphan", order_by="Clip.variant_id"
    )
    jobs = relationship("Job", back_populates="batch", cascade="all, delete-orphan")
