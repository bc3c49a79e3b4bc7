"""Stuck-job recovery sweep."""

from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.orm import Session

from models.database import Job
from shared.enums import JobStatus
from shared.errors import StuckJobError
from shared.utils import config, setup_logging

logger = setup_logging("recovery-sweep")


def reset_stuck_jobs(db: Session, threshold_minutes: int | None = None, now: datetime | None = None) -> int:
    """Requeue running jobs whose claim is older than the threshold.

    Returns the number of jobs reset. Running it again immediately resets
    nothing more, since reset jobs are no longer running.
    """
    if threshold_minutes is None:
        threshold_minutes = config.stuck_threshold_minutes
    if threshold_minutes <= 0:
        raise ValueError("threshold_minutes must be positive")

    now = now or datetime.utcnow()
    cutoff = now - timedelta(minutes=threshold_minutes)
    note = StuckJobError(threshold_minutes).message

    result = db.execute(
        update(Job)
        .where(
            Job.status == JobStatus.RUNNING.value,
            Job.locked_at.is_not(None),
            Job.locked_at < cutoff,
        )
        .values(status=JobStatus.QUEUED.value, error=note, locked_at=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    reset_count = result.rowcount or 0
    if reset_count:
        logger.warning(f"Reset {reset_count} stuck job(s) older than {threshold_minutes} minutes")
    return reset_count
