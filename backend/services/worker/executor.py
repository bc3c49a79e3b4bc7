"""
Worker execution loop.

One call to run_once() is one tick: claim at most one queued job, run its
stage handler, and commit the outcome (results and next stage on success,
retry or terminal failure otherwise). Ticks are stateless; everything a
later tick needs lives in the jobs, clips and batches tables.
"""

from datetime import datetime
from typing import Any, Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.database import Batch, Clip, Job
from services.billing.ledger import CreditLedger
from services.providers.registry import ProviderSet
from services.websocket_progress import WebSocketProgressManager, websocket_manager
from services.worker.handlers import StageContext, StageHandlers, compile_stage_for
from services.worker.queue import JobQueue
from shared.config import ServiceConfig
from shared.enums import (
    ACTIVE_BATCH_STATUSES,
    BATCH_LEVEL_JOB_TYPES,
    TERMINAL_CLIP_STATUSES,
    BatchStatus,
    ChargedState,
    ClipStatus,
    ClipUIState,
    JobType,
    PaymentStatus,
)
from shared.errors import CANCELLED_MESSAGE, FeedrError, StageError, StorageError, classify_failure
from shared.models import StageResult, TickResult
from shared.utils import config, setup_logging

logger = setup_logging("worker-loop")

MAX_RETRIES_MESSAGE = "Max retries exceeded"

# Clip (status, ui_state) while a stage runs. Video is handled separately
# because a resumed render keeps its rendering state.
STAGE_ENTRY_STATES: dict[JobType, tuple[ClipStatus, ClipUIState] | None] = {
    JobType.RESEARCH: None,
    JobType.COMPILE: (ClipStatus.SCRIPTING, ClipUIState.WRITING),
    JobType.TTS: (ClipStatus.VO, ClipUIState.VOICING),
    JobType.VIDEO: (ClipStatus.RENDERING, ClipUIState.SUBMITTING),
    JobType.ASSEMBLE: (ClipStatus.ASSEMBLING, ClipUIState.ASSEMBLING),
    JobType.IMAGE_COMPILE: (ClipStatus.SCRIPTING, ClipUIState.WRITING),
    JobType.IMAGE: (ClipStatus.GENERATING, ClipUIState.RENDERING),
}
assert set(STAGE_ENTRY_STATES) == set(JobType)


class WorkerLoop:
    """Runs pipeline ticks against one database session."""

    def __init__(
        self,
        db: Session,
        providers: ProviderSet,
        max_attempts: int | None = None,
        progress: WebSocketProgressManager | None = None,
        cfg: ServiceConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        cfg = cfg or config
        self.db = db
        self.queue = JobQueue(db)
        self.ledger = CreditLedger(db)
        self.handlers = StageHandlers(providers, cfg)
        self.max_attempts = max_attempts if max_attempts is not None else cfg.max_job_attempts
        self.progress = progress if progress is not None else websocket_manager
        self._sleep = sleep
        self._clock = clock

    async def run_once(self) -> TickResult:
        """Process at most one job."""
        try:
            job = self.queue.claim_next()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to claim a job: {e}")
            raise StorageError(f"Failed to claim a job: {e}") from e

        if job is None:
            return TickResult(processed=False)

        logger.info(f"Claimed job {job.id} ({job.type}) for batch {job.batch_id}, attempt {job.attempts}")
        try:
            outcome, error = await self._process(job)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Storage failure while processing job {job.id}: {e}")
            raise StorageError(f"Storage failure while processing job {job.id}: {e}") from e

        await self._publish(job, outcome)
        return TickResult(processed=True, job_id=job.id, job_type=job.type, outcome=outcome, error=error)

    async def _process(self, job: Job) -> tuple[str, str | None]:
        batch = self.db.get(Batch, job.batch_id)
        clip = self.db.get(Clip, job.clip_id) if job.clip_id else None

        if batch is None or batch.status == BatchStatus.CANCELLED.value:
            self._cancel_job(job, clip)
            return "cancelled", CANCELLED_MESSAGE

        if clip is not None and ClipStatus(clip.status) in TERMINAL_CLIP_STATUSES:
            self.queue.mark_failed(job, f"Clip already {clip.status}")
            self.db.commit()
            logger.warning(f"Skipped job {job.id}: clip {clip.id} is already {clip.status}")
            return "skipped", job.error

        if job.attempts > self.max_attempts:
            error = StageError(MAX_RETRIES_MESSAGE, retryable=False)
            return self._handle_failure(job, batch, clip, error)

        self._enter_stage(job, batch, clip)

        handler = self.handlers.for_type(job.type)
        ctx = StageContext(self.db, job, batch, clip, sleep=self._sleep, clock=self._clock)
        try:
            result = await handler(ctx)
        except SQLAlchemyError:
            raise
        except StageError as e:
            return self._handle_failure(job, batch, clip, e)
        except FeedrError as e:
            return self._handle_failure(job, batch, clip, StageError(e.message, retryable=e.retryable))
        except Exception as e:
            logger.error(f"Unexpected error in {job.type} handler for job {job.id}: {e}")
            return self._handle_failure(job, batch, clip, StageError(str(e) or type(e).__name__, retryable=True))

        return self._commit_success(job, batch, clip, result)

    def _enter_stage(self, job: Job, batch: Batch, clip: Clip | None) -> None:
        entry = STAGE_ENTRY_STATES[JobType(job.type)]
        if entry is None:
            return

        now = datetime.utcnow()
        status, ui_state = entry
        targets = [clip] if clip is not None else self._open_clips(batch.id)
        for target in targets:
            target.status = status.value
            # A resumed render keeps its rendering state
            if not (job.type == JobType.VIDEO.value and target.provider_task_id):
                target.ui_state = ui_state.value
            if target.ui_started_at is None:
                target.ui_started_at = now
            target.ui_last_progress_at = now
        self.db.commit()

    def _commit_success(self, job: Job, batch: Batch, clip: Clip | None, result: StageResult) -> tuple[str, None]:
        # The batch may have been cancelled while the handler ran
        self.db.refresh(batch)
        if batch.status == BatchStatus.CANCELLED.value:
            self.db.rollback()
            self._cancel_job(job, clip)
            logger.info(f"Discarded {job.type} result for cancelled batch {batch.id}")
            return "cancelled", None

        now = datetime.utcnow()
        for key, value in result.batch_fields.items():
            setattr(batch, key, value)

        if clip is not None:
            for key, value in result.clip_fields.items():
                setattr(clip, key, value)
            if result.completes_clip:
                clip.status = ClipStatus.READY.value
                clip.ui_state = ClipUIState.READY.value
                clip.ui_message = None
                clip.error = None
            clip.ui_last_progress_at = now

        for clip_id, fields in result.clip_updates.items():
            target = self.db.get(Clip, clip_id)
            if target is None or target.batch_id != batch.id:
                continue
            for key, value in fields.items():
                setattr(target, key, value)
            target.ui_last_progress_at = now

        self.queue.mark_done(job)
        for next_job in result.next_jobs:
            self.queue.enqueue_if_absent(
                batch.id,
                next_job["type"],
                next_job.get("payload") or {},
                clip_id=next_job.get("clip_id"),
            )

        if result.completes_clip:
            self.evaluate_batch(batch)
        self.db.commit()
        logger.info(f"Job {job.id} ({job.type}) done, {len(result.next_jobs)} job(s) enqueued")
        return "done", None

    def _handle_failure(
        self, job: Job, batch: Batch, clip: Clip | None, error: StageError
    ) -> tuple[str, str]:
        # Drop anything the handler staged but did not checkpoint
        self.db.rollback()
        message = error.message

        if batch.status == BatchStatus.CANCELLED.value:
            self._cancel_job(job, clip)
            return "cancelled", CANCELLED_MESSAGE

        if clip is not None and ClipStatus(clip.status) in TERMINAL_CLIP_STATUSES:
            self.queue.mark_failed(job, f"Clip already {clip.status}")
            self.db.commit()
            logger.warning(f"Job {job.id} abandoned: clip {clip.id} is already {clip.status}")
            return "skipped", job.error

        if error.retryable and job.attempts < self.max_attempts:
            self.queue.requeue(job, message)
            if clip is not None:
                clip.ui_last_progress_at = datetime.utcnow()
            self.db.commit()
            logger.warning(f"Job {job.id} ({job.type}) attempt {job.attempts} failed, will retry: {message}")
            return "retry", message

        if error.retryable:
            message = f"{MAX_RETRIES_MESSAGE}: {message}"
        self.queue.mark_failed(job, message)
        logger.error(f"Job {job.id} ({job.type}) failed after {job.attempts} attempt(s): {message}")

        job_type = JobType(job.type)
        if job_type == JobType.RESEARCH:
            # Research is optional; continue without it
            batch.research_json = None
            batch.status = BatchStatus.RUNNING.value
            self.queue.enqueue_if_absent(batch.id, compile_stage_for(batch), dict(job.payload_json or {}))
            self.db.commit()
            logger.warning(f"Research failed for batch {batch.id}, continuing without research")
            return "failed", message

        if job_type in BATCH_LEVEL_JOB_TYPES:
            failed_clips = [
                self._fail_clip(target, message, charged=False) for target in self._open_clips(batch.id)
            ]
            batch.error = message
        else:
            charged = error.provider_may_have_charged or clip.charged_state == ChargedState.CHARGED.value
            failed_clips = [self._fail_clip(clip, message, charged=charged)]
        self.db.commit()

        for failed in failed_clips:
            if failed.charged_state == ChargedState.NOT_CHARGED.value:
                self.ledger.refund_clip_share(batch, failed)

        self.evaluate_batch(batch)
        self.db.commit()
        return "failed", message

    def _fail_clip(self, clip: Clip, message: str, charged: bool) -> Clip:
        clip.status = ClipStatus.FAILED.value
        clip.ui_state = (ClipUIState.FAILED_CHARGED if charged else ClipUIState.FAILED_NOT_CHARGED).value
        clip.charged_state = (ChargedState.CHARGED if charged else ChargedState.NOT_CHARGED).value
        clip.ui_message = classify_failure(message).user_message
        clip.error = message
        clip.ui_last_progress_at = datetime.utcnow()
        return clip

    def _cancel_job(self, job: Job, clip: Clip | None) -> None:
        self.queue.mark_failed(job, CANCELLED_MESSAGE)
        if clip is not None and ClipStatus(clip.status) not in TERMINAL_CLIP_STATUSES:
            clip.status = ClipStatus.FAILED.value
            clip.ui_state = ClipUIState.CANCELED.value
            clip.ui_message = classify_failure(CANCELLED_MESSAGE).user_message
            clip.error = CANCELLED_MESSAGE
        elif clip is not None and clip.error == CANCELLED_MESSAGE:
            clip.ui_state = ClipUIState.CANCELED.value
        self.db.commit()

    def _open_clips(self, batch_id: str) -> list[Clip]:
        clips = self.db.query(Clip).filter(Clip.batch_id == batch_id).order_by(Clip.variant_id).all()
        return [clip for clip in clips if ClipStatus(clip.status) not in TERMINAL_CLIP_STATUSES]

    def evaluate_batch(self, batch: Batch) -> None:
        """Move a batch to done or failed once its clips allow it.

        done needs every clip ready; failed needs every clip terminal and
        none ready. A mix of ready and failed clips leaves the batch running.
        """
        if BatchStatus(batch.status) not in ACTIVE_BATCH_STATUSES:
            return

        statuses = [
            ClipStatus(status)
            for (status,) in self.db.query(Clip.status).filter(Clip.batch_id == batch.id).all()
        ]
        if not statuses or any(status not in TERMINAL_CLIP_STATUSES for status in statuses):
            return

        if all(status == ClipStatus.READY for status in statuses):
            batch.status = BatchStatus.DONE.value
            logger.info(f"Batch {batch.id} done")
        elif not any(status == ClipStatus.READY for status in statuses):
            batch.status = BatchStatus.FAILED.value
            batch.error = batch.error or "All clips failed"
            if batch.user_charge_cents and batch.refunded_cents >= batch.user_charge_cents:
                batch.payment_status = PaymentStatus.REFUNDED.value
            logger.warning(f"Batch {batch.id} failed")

    async def _publish(self, job: Job, outcome: str) -> None:
        batch = self.db.get(Batch, job.batch_id)
        if batch is None:
            return
        clips = self.db.query(Clip).filter(Clip.batch_id == batch.id).order_by(Clip.variant_id).all()
        await self.progress.publish(
            batch.id,
            {
                "type": "batch_progress",
                "batch_id": batch.id,
                "batch_status": batch.status,
                "job": {"id": job.id, "type": job.type, "status": job.status, "outcome": outcome},
                "clips": [
                    {
                        "id": clip.id,
                        "variant_id": clip.variant_id,
                        "status": clip.status,
                        "ui_state": clip.ui_state,
                        "ui_message": clip.ui_message,
                    }
                    for clip in clips
                ],
            },
        )
