"""
Batch lifecycle management.

Creates batches (validation, method resolution, pricing, credit debit,
clip and seed job creation) and exposes the read, cancel and review
operations. There is no transaction spanning the ledger and the batch
tables, so a failed debit or insert is undone by explicit compensation.
"""

from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.database import Batch, Clip, Job
from services.billing.ledger import CreditLedger
from services.presets.resolver import build_structured_prompt, is_known_preset, resolve_preset
from services.pricing.cost_model import analyze_complexity, compute_base_cost, estimate_batch_cost
from services.providers.registry import research_enabled as research_configured
from services.worker.queue import JobQueue
from shared.enums import (
    ACTIVE_BATCH_STATUSES,
    ALLOWED_BATCH_SIZES,
    MAX_IMAGE_PROMPTS,
    TERMINAL_CLIP_STATUSES,
    BatchStatus,
    ChargedState,
    ClipStatus,
    ClipUIState,
    JobType,
    OutputType,
    PaymentStatus,
    QualityMode,
    TestMode,
)
from shared.errors import (
    CANCELLED_MESSAGE,
    NotFoundError,
    PaymentError,
    StorageError,
    ValidationError,
    classify_failure,
)
from shared.models import (
    BatchResponse,
    BatchSnapshot,
    BillingBreakdown,
    ClipResponse,
    CostEstimateRequest,
    GenerateBatchRequest,
    GenerateBatchResponse,
)
from shared.utils import config, format_variant_id, setup_logging

logger = setup_logging("batch-manager")


def _enum_value(enum_cls, value: Any, field: str):
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field}: {value!r} (expected one of {allowed})", {"field": field}) from e


class BatchLifecycleManager:
    """Batch operations bound to one database session."""

    def __init__(self, db: Session, ledger: CreditLedger | None = None, research_enabled: bool | None = None) -> None:
        self.db = db
        self.ledger = ledger or CreditLedger(db)
        self.queue = JobQueue(db)
        self.research_enabled = research_configured() if research_enabled is None else research_enabled

    # Creation

    def create_batch(self, request: GenerateBatchRequest, user_id: str | None = None) -> GenerateBatchResponse:
        intent_text = (request.intent_text or "").strip()
        if not intent_text:
            raise ValidationError("intent_text is required", {"field": "intent_text"})

        mode = _enum_value(TestMode, request.mode, "mode")
        output_type = _enum_value(OutputType, request.output_type, "output_type")
        quality_mode = _enum_value(QualityMode, request.quality_mode, "quality_mode")
        if request.batch_size not in ALLOWED_BATCH_SIZES:
            raise ValidationError(
                f"Invalid batch_size: {request.batch_size}. Must be 2, 4, 6, or 8", {"field": "batch_size"}
            )
        if not is_known_preset(request.preset_key):
            raise ValidationError(f"Unknown preset_key: {request.preset_key!r}", {"field": "preset_key"})

        image_prompts = request.image_prompts or []
        if image_prompts and output_type != OutputType.IMAGE:
            raise ValidationError("image_prompts are only valid for image output", {"field": "image_prompts"})
        if len(image_prompts) > MAX_IMAGE_PROMPTS:
            raise ValidationError(
                f"At most {MAX_IMAGE_PROMPTS} image prompts are allowed", {"field": "image_prompts"}
            )

        clip_count = len(image_prompts) if image_prompts else request.batch_size
        quote = estimate_batch_cost(quality_mode, output_type, clip_count)
        user_charge = self._validated_charge(request.estimated_cost, quote.user_charge_cents)
        base_cost = compute_base_cost(user_charge)

        resolved_preset = resolve_preset(intent_text, request.preset_key, output_type)

        batch = Batch(
            user_id=user_id,
            intent_text=intent_text,
            preset_key=request.preset_key,
            resolved_preset_key=resolved_preset,
            mode=mode.value,
            batch_size=request.batch_size,
            output_type=output_type.value,
            status=BatchStatus.QUEUED.value,
            quality_mode=quality_mode.value,
            base_cost_cents=base_cost,
            user_charge_cents=user_charge,
            refunded_cents=0,
            # Nothing to collect from anonymous or zero-charge batches
            payment_status=PaymentStatus.PENDING.value if user_id and user_charge > 0 else PaymentStatus.FREE.value,
        )
        try:
            self.db.add(batch)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create batch: {e}")
            raise StorageError(f"Failed to create batch: {e}") from e
        batch_id = batch.id

        debited = False
        if user_id and user_charge > 0:
            debited = self._debit_or_compensate(batch, user_id, user_charge)

        if image_prompts:
            seed_job_type = JobType.IMAGE
        elif self.research_enabled:
            seed_job_type = JobType.RESEARCH
        else:
            seed_job_type = JobType.IMAGE_COMPILE if output_type == OutputType.IMAGE else JobType.COMPILE

        try:
            if debited:
                batch.payment_status = PaymentStatus.CHARGED.value
            batch.status = (
                BatchStatus.RESEARCHING.value if seed_job_type == JobType.RESEARCH else BatchStatus.RUNNING.value
            )

            clips = self._create_clips(batch, clip_count, resolved_preset, request)
            if image_prompts:
                for clip, entry in zip(clips, image_prompts):
                    self.queue.enqueue(
                        batch_id,
                        JobType.IMAGE,
                        {"prompt": entry.prompt, "image_type": entry.type, "aspect_ratio": entry.aspect_ratio},
                        clip_id=clip.id,
                    )
            else:
                self.queue.enqueue(
                    batch_id,
                    seed_job_type,
                    {
                        "intent_text": intent_text,
                        "preset_key": resolved_preset,
                        "mode": mode.value,
                        "output_type": output_type.value,
                        "quality_mode": quality_mode.value,
                        "image_type": request.image_type,
                        "aspect_ratio": request.aspect_ratio,
                        "image_pack": request.image_pack,
                        "structured_prompt": build_structured_prompt(
                            intent_text, resolved_preset, mode.value, 0, clip_count
                        ),
                    },
                )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to seed batch {batch_id}: {e}")
            self._compensate(batch_id, user_id, user_charge if debited else 0)
            raise StorageError(f"Failed to create batch: {e}") from e

        logger.info(
            f"Created batch {batch_id}: {clip_count} {output_type.value} variant(s), "
            f"preset {resolved_preset}, seed job {seed_job_type.value}, charge {user_charge}"
        )
        return GenerateBatchResponse(
            batch_id=batch_id,
            output_type=output_type.value,
            resolved_preset_key=resolved_preset,
            seed_job_type=seed_job_type.value,
            clip_count=clip_count,
            billing=BillingBreakdown(
                base_cost_cents=base_cost,
                user_charge_cents=user_charge,
                quality_mode=quality_mode.value,
                payment_status=batch.payment_status,
                breakdown=quote.breakdown,
            ),
        )

    def _validated_charge(self, requested: int | None, quoted: int) -> int:
        if requested is None:
            return quoted
        if requested < 0:
            raise ValidationError("estimated_cost cannot be negative", {"field": "estimated_cost"})
        if config.enforce_quoted_charge and requested != quoted:
            raise ValidationError(
                f"estimated_cost {requested} does not match the quoted charge {quoted}",
                {"field": "estimated_cost", "quoted": quoted},
            )
        return requested

    def _debit_or_compensate(self, batch: Batch, user_id: str, amount: int) -> bool:
        batch_id = batch.id
        try:
            ok = self.ledger.debit(user_id, batch_id, amount)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Ledger failure debiting batch {batch_id}: {e}")
            ok = False

        if ok:
            return True

        available = self.ledger.get_balance(user_id)
        self._delete_batch(batch_id)
        raise PaymentError(
            "Insufficient credits" if available < amount else "Failed to process payment",
            {"required": amount, "available": available},
        )

    def _create_clips(
        self, batch: Batch, clip_count: int, preset_key: str, request: GenerateBatchRequest
    ) -> list[Clip]:
        clips = []
        image_prompts = request.image_prompts or []
        for index in range(clip_count):
            clip = Clip(
                batch_id=batch.id,
                variant_id=format_variant_id(index),
                preset_key=preset_key,
                status=ClipStatus.PLANNED.value,
                ui_state=ClipUIState.QUEUED.value,
                charged_state=ChargedState.UNKNOWN.value,
                winner=False,
                killed=False,
            )
            if batch.output_type == OutputType.IMAGE.value:
                if index < len(image_prompts):
                    clip.image_prompt = image_prompts[index].prompt
                    clip.image_type = image_prompts[index].type
                    clip.aspect_ratio = image_prompts[index].aspect_ratio
                else:
                    clip.image_type = request.image_type
                    clip.aspect_ratio = request.aspect_ratio
            self.db.add(clip)
            clips.append(clip)
        self.db.flush()
        return clips

    def _compensate(self, batch_id: str, user_id: str | None, debited_amount: int) -> None:
        """Best-effort removal of a partially created batch."""
        try:
            if user_id and debited_amount > 0:
                self.ledger.refund(user_id, batch_id, "batch", debited_amount, "Refund for failed batch creation")
            self._delete_batch(batch_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Compensation for batch {batch_id} failed: {e}")

    def _delete_batch(self, batch_id: str) -> None:
        self.db.query(Job).filter(Job.batch_id == batch_id).delete(synchronize_session=False)
        self.db.query(Clip).filter(Clip.batch_id == batch_id).delete(synchronize_session=False)
        self.db.query(Batch).filter(Batch.id == batch_id).delete(synchronize_session=False)
        self.db.commit()
        logger.info(f"Deleted batch {batch_id}")

    def estimate(self, request: CostEstimateRequest) -> dict[str, Any]:
        """Quote a batch without creating it."""
        quality_mode = _enum_value(QualityMode, request.quality_mode, "quality_mode")
        output_type = _enum_value(OutputType, request.output_type, "output_type")
        if request.batch_size <= 0 or request.batch_size > MAX_IMAGE_PROMPTS:
            raise ValidationError(f"Invalid batch_size: {request.batch_size}", {"field": "batch_size"})

        quote = estimate_batch_cost(quality_mode, output_type, request.batch_size).model_dump(mode="json")
        if request.intent_text:
            quote["complexity"] = analyze_complexity(request.intent_text).model_dump(mode="json")
        return quote

    # Reads

    def get_batch(self, batch_id: str, user_id: str | None = None) -> Batch:
        batch = self.db.get(Batch, batch_id)
        if batch is None or (user_id and batch.user_id and batch.user_id != user_id):
            raise NotFoundError(f"Batch {batch_id} not found", {"batch_id": batch_id})
        return batch

    def get_latest_batch(self, user_id: str | None) -> Batch | None:
        query = self.db.query(Batch)
        query = query.filter(Batch.user_id.is_(None)) if user_id is None else query.filter(Batch.user_id == user_id)
        return query.order_by(Batch.created_at.desc()).first()

    def list_clips(self, batch_id: str) -> list[Clip]:
        return self.db.query(Clip).filter(Clip.batch_id == batch_id).order_by(Clip.variant_id).all()

    def get_batch_snapshot(self, batch_id: str, user_id: str | None = None) -> BatchSnapshot:
        batch = self.get_batch(batch_id, user_id)
        clips = self.list_clips(batch_id)
        return BatchSnapshot(
            batch=BatchResponse.model_validate(batch),
            clips=[ClipResponse.model_validate(clip) for clip in clips],
            jobs=self.queue.counts_by_status(batch_id),
            clips_settled=bool(clips) and all(ClipStatus(clip.status) in TERMINAL_CLIP_STATUSES for clip in clips),
        )

    # User actions

    def cancel_batch(self, batch_id: str, user_id: str | None = None) -> Batch:
        """Cancel an active batch and refund every clip not yet charged by a provider."""
        batch = self.get_batch(batch_id, user_id)
        if BatchStatus(batch.status) not in ACTIVE_BATCH_STATUSES:
            raise ValidationError(f"Batch {batch_id} is already {batch.status}", {"status": batch.status})

        clips = self.list_clips(batch.id)
        if clips and all(ClipStatus(clip.status) in TERMINAL_CLIP_STATUSES for clip in clips):
            raise ValidationError(f"Batch {batch_id} has no clips in progress", {"status": batch.status})

        info = classify_failure(CANCELLED_MESSAGE)
        batch.status = BatchStatus.CANCELLED.value
        self.queue.cancel_queued(batch.id, CANCELLED_MESSAGE)

        canceled: list[Clip] = []
        for clip in clips:
            if ClipStatus(clip.status) in TERMINAL_CLIP_STATUSES:
                continue
            clip.status = ClipStatus.FAILED.value
            clip.ui_state = ClipUIState.CANCELED.value
            clip.ui_message = info.user_message
            clip.error = CANCELLED_MESSAGE
            if clip.charged_state != ChargedState.CHARGED.value:
                clip.charged_state = ChargedState.NOT_CHARGED.value
            canceled.append(clip)
        self.db.commit()

        refunded = 0
        for clip in canceled:
            if clip.charged_state == ChargedState.NOT_CHARGED.value:
                refunded += self.ledger.refund_clip_share(batch, clip)

        logger.info(f"Cancelled batch {batch_id}: {len(canceled)} clip(s) canceled, {refunded} credits refunded")
        return batch

    def update_review(
        self,
        clip_id: str,
        winner: bool | None = None,
        killed: bool | None = None,
        user_id: str | None = None,
    ) -> Clip:
        clip = self.db.get(Clip, clip_id)
        if clip is None:
            raise NotFoundError(f"Clip {clip_id} not found", {"clip_id": clip_id})
        self.get_batch(clip.batch_id, user_id)

        if winner is not None:
            clip.winner = winner
        if killed is not None:
            clip.killed = killed
        self.db.commit()
        return clip
