"""Database-backed job queue with an atomic claim protocol."""

from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from models.database import Job
from shared.enums import BATCH_LEVEL_JOB_TYPES, JobStatus, JobType
from shared.utils import setup_logging

logger = setup_logging("job-queue")


class JobQueue:
    """Job table operations for one database session.

    Claims and heartbeats commit immediately so other ticks observe them.
    enqueue, mark_done, mark_failed and requeue only stage their change;
    the caller commits them together with the stage results they belong to.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def enqueue(
        self,
        batch_id: str,
        job_type: JobType,
        payload: dict[str, Any] | None = None,
        clip_id: str | None = None,
    ) -> Job:
        job_type = JobType(job_type)
        if (clip_id is None) != (job_type in BATCH_LEVEL_JOB_TYPES):
            raise ValueError(f"{job_type.value} jobs {'must not' if clip_id else 'must'} reference a clip")

        job = Job(
            batch_id=batch_id,
            clip_id=clip_id,
            type=job_type.value,
            payload_json=payload or {},
            status=JobStatus.QUEUED.value,
            attempts=0,
        )
        self.db.add(job)
        self.db.flush()
        return job

    def find_active(self, batch_id: str, job_type: JobType, clip_id: str | None = None) -> Job | None:
        """Existing non-failed job for the same batch, clip and stage."""
        query = self.db.query(Job).filter(
            Job.batch_id == batch_id,
            Job.type == JobType(job_type).value,
            Job.status != JobStatus.FAILED.value,
        )
        if clip_id is None:
            query = query.filter(Job.clip_id.is_(None))
        else:
            query = query.filter(Job.clip_id == clip_id)
        return query.first()

    def enqueue_if_absent(
        self,
        batch_id: str,
        job_type: JobType,
        payload: dict[str, Any] | None = None,
        clip_id: str | None = None,
    ) -> Job | None:
        """Enqueue a stage unless it already exists; returns None when it did."""
        if self.find_active(batch_id, job_type, clip_id) is not None:
            logger.info(f"Skipping duplicate {JobType(job_type).value} job for batch {batch_id} clip {clip_id}")
            return None
        return self.enqueue(batch_id, job_type, payload, clip_id)

    def claim_next(self, candidates: int = 5) -> Job | None:
        """Claim the oldest queued job, or return None when nothing is queued."""
        stmt = (
            select(Job.id)
            .where(Job.status == JobStatus.QUEUED.value)
            .order_by(Job.created_at, Job.id)
            .limit(candidates)
        )
        if self.db.get_bind().dialect.name == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)

        job_ids = self.db.execute(stmt).scalars().all()
        for job_id in job_ids:
            job = self.try_claim(job_id)
            if job is not None:
                return job
        self.db.rollback()
        return None

    def try_claim(self, job_id: int) -> Job | None:
        """Conditionally move one job from queued to running.

        The WHERE clause on status is the exclusivity guarantee: of any
        number of concurrent claimers, exactly one sees a row updated.
        """
        now = datetime.utcnow()
        result = self.db.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == JobStatus.QUEUED.value)
            .values(
                status=JobStatus.RUNNING.value,
                attempts=Job.attempts + 1,
                locked_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount != 1:
            logger.debug(f"Job {job_id} was claimed by another worker")
            return None
        return self.db.get(Job, job_id)

    def heartbeat(self, job_id: int) -> bool:
        """Refresh the claim timestamp of a running job."""
        now = datetime.utcnow()
        result = self.db.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == JobStatus.RUNNING.value)
            .values(locked_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def mark_done(self, job: Job) -> None:
        job.status = JobStatus.DONE.value
        job.locked_at = None

    def mark_failed(self, job: Job, error: str) -> None:
        job.status = JobStatus.FAILED.value
        job.error = error
        job.locked_at = None

    def requeue(self, job: Job, error: str) -> None:
        job.status = JobStatus.QUEUED.value
        job.error = error
        job.locked_at = None

    def cancel_queued(self, batch_id: str, reason: str) -> int:
        """Fail every queued job of a batch. Running jobs notice cancellation on commit."""
        result = self.db.execute(
            update(Job)
            .where(Job.batch_id == batch_id, Job.status == JobStatus.QUEUED.value)
            .values(status=JobStatus.FAILED.value, error=reason, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def counts_by_status(self, batch_id: str) -> dict[str, int]:
        rows = (
            self.db.query(Job.status, func.count(Job.id))
            .filter(Job.batch_id == batch_id)
            .group_by(Job.status)
            .all()
        )
        counts = {status.value: 0 for status in JobStatus}
        counts.update({status: count for status, count in rows})
        return counts

    def list_for_batch(self, batch_id: str) -> list[Job]:
        return self.db.query(Job).filter(Job.batch_id == batch_id).order_by(Job.created_at, Job.id).all()
