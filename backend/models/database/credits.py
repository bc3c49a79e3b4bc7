"""
Credit models - User balances and the append-only transaction ledger
"""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, Text

from database import Base


class UserCredits(Base):
    """Current credit balance of a user, in cents"""

    __tablename__ = "user_credits"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), unique=True, nullable=False, index=True)
    balance_cents = Column(Integer, nullable=False, default=0)
    lifetime_added_cents = Column(Integer, nullable=False, default=0)
    lifetime_spent_cents = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CreditTransaction(Base):
    """A single balance movement; idempotency_key makes debits and refunds replay-safe"""

    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(100), nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)  # negative for debits
    balance_after_cents = Column(Integer, nullable=False)
    transaction_type = Column(String(20), nullable=False)
    batch_id = Column(String(36), nullable=True, index=True)
    clip_id = Column(String(36), nullable=True)
    idempotency_key = Column(String(120), unique=True, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
