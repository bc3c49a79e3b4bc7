"""
Database models package - SQLAlchemy ORM models
"""

from .batch import Batch
from .clip import Clip
from .credits import CreditTransaction, UserCredits
from .job import Job

__all__ = [
    "Batch",
    "Clip",
    "CreditTransaction",
    "Job",
    "UserCredits",
]
