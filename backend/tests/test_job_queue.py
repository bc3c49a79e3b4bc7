from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from models.database import Batch, Clip, Job
from services.worker.queue import JobQueue
from services.worker.recovery import reset_stuck_jobs
from shared.enums import JobStatus, JobType


@pytest.fixture
def batch(db_session: Session) -> Batch:
    batch = Batch(
        intent_text="queue test",
        preset_key="AUTO",
        resolved_preset_key="FOUNDERS",
        mode="hook_test",
        batch_size=2,
        output_type="video",
        status="running",
        quality_mode="balanced",
        base_cost_cents=0,
        user_charge_cents=0,
        refunded_cents=0,
        payment_status="free",
    )
    db_session.add(batch)
    db_session.flush()
    db_session.add_all([Clip(batch_id=batch.id, variant_id="V01"), Clip(batch_id=batch.id, variant_id="V02")])
    db_session.commit()
    return batch


def first_clip(db: Session, batch: Batch) -> Clip:
    return db.query(Clip).filter(Clip.batch_id == batch.id).order_by(Clip.variant_id).first()


def test_enqueue_validates_clip_reference(db_session: Session, batch: Batch) -> None:
    queue = JobQueue(db_session)
    clip = first_clip(db_session, batch)

    with pytest.raises(ValueError):
        queue.enqueue(batch.id, JobType.COMPILE, clip_id=clip.id)
    with pytest.raises(ValueError):
        queue.enqueue(batch.id, JobType.TTS)

    job = queue.enqueue(batch.id, JobType.TTS, clip_id=clip.id)
    assert job.status == JobStatus.QUEUED.value
    assert job.attempts == 0


def test_enqueue_if_absent_skips_duplicates(db_session: Session, batch: Batch) -> None:
    queue = JobQueue(db_session)
    clip = first_clip(db_session, batch)
    assert queue.enqueue_if_absent(batch.id, JobType.TTS, clip_id=clip.id) is not None
    assert queue.enqueue_if_absent(batch.id, JobType.TTS, clip_id=clip.id) is None
    db_session.commit()
    assert len(queue.list_for_batch(batch.id)) == 1


def test_claim_next_takes_oldest_and_counts_attempt(db_session: Session, batch: Batch) -> None:
    queue = JobQueue(db_session)
    first = queue.enqueue(batch.id, JobType.COMPILE)
    first.created_at = datetime.utcnow() - timedelta(minutes=5)
    clip = first_clip(db_session, batch)
    queue.enqueue(batch.id, JobType.TTS, clip_id=clip.id)
    db_session.commit()

    claimed = queue.claim_next()
    assert claimed is not None
    assert claimed.id == first.id
    assert claimed.status == JobStatus.RUNNING.value
    assert claimed.attempts == 1
    assert claimed.locked_at is not None


def test_claim_next_returns_none_when_idle(db_session: Session) -> None:
    assert JobQueue(db_session).claim_next() is None


def test_claim_is_exclusive_across_sessions(db_session: Session, second_session: Session, batch: Batch) -> None:
    job = JobQueue(db_session).enqueue(batch.id, JobType.COMPILE)
    db_session.commit()

    first = JobQueue(db_session).try_claim(job.id)
    second = JobQueue(second_session).try_claim(job.id)

    assert first is not None
    assert second is None
    assert JobQueue(second_session).claim_next() is None


def test_heartbeat_only_touches_running_jobs(db_session: Session, batch: Batch) -> None:
    queue = JobQueue(db_session)
    job = queue.enqueue(batch.id, JobType.COMPILE)
    db_session.commit()

    assert queue.heartbeat(job.id) is False
    queue.try_claim(job.id)
    assert queue.heartbeat(job.id) is True


def test_cancel_queued_fails_only_queued_jobs(db_session: Session, batch: Batch) -> None:
    queue = JobQueue(db_session)
    clip = first_clip(db_session, batch)
    running = queue.enqueue(batch.id, JobType.COMPILE)
    queue.enqueue(batch.id, JobType.TTS, clip_id=clip.id)
    db_session.commit()
    queue.try_claim(running.id)

    assert queue.cancel_queued(batch.id, "Cancelled by user") == 1
    db_session.commit()
    counts = queue.counts_by_status(batch.id)
    assert counts == {"queued": 0, "running": 1, "done": 0, "failed": 1}


def test_reset_stuck_jobs_requeues_stale_claims(db_session: Session, batch: Batch) -> None:
    queue = JobQueue(db_session)
    job = queue.enqueue(batch.id, JobType.COMPILE)
    db_session.commit()
    queue.try_claim(job.id)

    claimed_at = datetime.utcnow()
    db_session.query(Job).filter(Job.id == job.id).update({"locked_at": claimed_at})
    db_session.commit()

    # Still within the threshold
    assert reset_stuck_jobs(db_session, 20, now=claimed_at + timedelta(minutes=10)) == 0

    assert reset_stuck_jobs(db_session, 20, now=claimed_at + timedelta(minutes=25)) == 1
    job = db_session.get(Job, job.id)
    assert job.status == JobStatus.QUEUED.value
    assert job.error == "Reset: job exceeded 20 minute threshold"
    assert job.locked_at is None

    # Idempotent: nothing left to reset
    assert reset_stuck_jobs(db_session, 20, now=claimed_at + timedelta(minutes=25)) == 0

    reclaimed = queue.claim_next()
    assert reclaimed is not None
    assert reclaimed.id == job.id
    assert reclaimed.attempts == 2


def test_reset_stuck_jobs_rejects_bad_threshold(db_session: Session) -> None:
    with pytest.raises(ValueError):
        reset_stuck_jobs(db_session, 0)
