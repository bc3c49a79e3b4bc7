"""
Stage handlers for the generation pipeline.

Each handler reads the job payload and the batch/clip snapshot, calls its
provider and returns a StageResult describing what to persist and which
stage to enqueue next. Handlers never commit their own results; the worker
loop applies them in one transaction. The only writes a handler makes
directly are checkpoints (StageContext.checkpoint) that must survive a
crash, such as the video provider's task id.
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Awaitable, Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from models.database import Batch, Clip, Job
from services.presets.resolver import build_structured_prompt, image_pack_for
from services.providers.registry import ProviderSet
from services.worker.queue import JobQueue
from shared.config import ServiceConfig
from shared.enums import (
    TERMINAL_CLIP_STATUSES,
    BatchStatus,
    ChargedState,
    ClipStatus,
    ClipUIState,
    JobType,
    OutputType,
)
from shared.errors import ProviderError, StageError
from shared.models import StageResult
from shared.utils import config, setup_logging

logger = setup_logging("stage-handlers")

VIDEO_DURATION_SECONDS = 15
VIDEO_ASPECT_RATIO = "9:16"
DELAYED_MESSAGE = "Taking longer than usual. Still rendering..."


class StageContext:
    """Everything a handler may read, plus the two durable side channels."""

    def __init__(
        self,
        db: Session,
        job: Job,
        batch: Batch,
        clip: Clip | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.db = db
        self.job = job
        self.batch = batch
        self.clip = clip
        self.queue = JobQueue(db)
        self.sleep = sleep or asyncio.sleep
        self.clock = clock or time.monotonic

    @property
    def payload(self) -> dict[str, Any]:
        return self.job.payload_json or {}

    def open_clips(self) -> list[Clip]:
        """Non-terminal clips of the batch, ordered by variant id."""
        clips = (
            self.db.query(Clip)
            .filter(Clip.batch_id == self.batch.id)
            .order_by(Clip.variant_id)
            .all()
        )
        return [clip for clip in clips if ClipStatus(clip.status) not in TERMINAL_CLIP_STATUSES]

    def heartbeat(self) -> bool:
        return self.queue.heartbeat(self.job.id)

    def checkpoint(self, **fields: Any) -> None:
        """Persist clip fields immediately, outside the stage transaction.

        The write only lands while the clip is open and its batch is not
        cancelled. Otherwise the stage is abandoned with a cancellation
        StageError and the clip keeps the state the cancellation gave it.
        """
        if self.clip is None:
            raise RuntimeError("checkpoint requires a clip-level job")
        live_batches = select(Batch.id).where(Batch.status != BatchStatus.CANCELLED.value)
        result = self.db.execute(
            update(Clip)
            .where(
                Clip.id == self.clip.id,
                Clip.status.not_in([status.value for status in TERMINAL_CLIP_STATUSES]),
                Clip.batch_id.in_(live_batches),
            )
            .values(ui_last_progress_at=datetime.utcnow(), **fields)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount != 1:
            logger.info(f"Dropped checkpoint for clip {self.clip.id}: batch {self.batch.id} was cancelled")
            raise StageError.cancelled()


def _provider_call_error(error: ProviderError) -> StageError:
    logger.warning(f"Provider call failed: {error.message}")
    return StageError.from_provider(error)


class StageHandlers:
    """Dispatch table from job type to handler coroutine."""

    def __init__(self, providers: ProviderSet, cfg: ServiceConfig | None = None) -> None:
        cfg = cfg or config
        self.providers = providers
        self.poll_interval = cfg.video_poll_interval_seconds
        self.delayed_after = cfg.video_delayed_after_seconds
        self.poll_timeout = cfg.video_poll_timeout_seconds
        self._handlers: dict[JobType, Callable[[StageContext], Awaitable[StageResult]]] = {
            JobType.RESEARCH: self.research,
            JobType.COMPILE: self.compile,
            JobType.TTS: self.tts,
            JobType.VIDEO: self.video,
            JobType.ASSEMBLE: self.assemble,
            JobType.IMAGE_COMPILE: self.image_compile,
            JobType.IMAGE: self.image,
        }
        assert set(self._handlers) == set(JobType)

    def for_type(self, job_type: str) -> Callable[[StageContext], Awaitable[StageResult]]:
        return self._handlers[JobType(job_type)]

    async def research(self, ctx: StageContext) -> StageResult:
        intent_text = ctx.payload.get("intent_text") or ctx.batch.intent_text
        try:
            research = await self.providers.research.research(intent_text, ctx.batch.resolved_preset_key)
        except ProviderError as e:
            raise _provider_call_error(e) from e

        return StageResult(
            batch_fields={"research_json": research, "status": BatchStatus.RUNNING.value},
            next_jobs=[{"type": compile_stage_for(ctx.batch), "clip_id": None, "payload": dict(ctx.payload)}],
        )

    async def compile(self, ctx: StageContext) -> StageResult:
        """Write one script per open clip; each clip then gets its own tts job."""
        batch = ctx.batch
        clips = ctx.open_clips()
        intent_text = ctx.payload.get("intent_text") or batch.intent_text
        mode = ctx.payload.get("mode") or batch.mode

        result = StageResult()
        for index, clip in enumerate(clips):
            brief = build_structured_prompt(intent_text, batch.resolved_preset_key, mode, index, len(clips))
            try:
                script = await self.providers.script.generate_script(brief, research=batch.research_json)
            except ProviderError as e:
                raise _provider_call_error(e) from e

            if not script.get("script_spoken"):
                raise StageError(f"Script generation returned no script for {clip.variant_id}")
            if not script.get("video_prompt"):
                raise StageError(f"Script generation returned no video prompt for {clip.variant_id}")

            result.clip_updates[clip.id] = {
                "script_spoken": script["script_spoken"],
                "on_screen_text_json": script.get("on_screen_text") or [],
                "video_prompt": script["video_prompt"],
                "status": ClipStatus.VO.value,
                "ui_state": ClipUIState.VOICING.value,
            }
            result.next_jobs.append({"type": JobType.TTS, "clip_id": clip.id, "payload": {}})
            ctx.heartbeat()

        logger.info(f"Compiled {len(clips)} script(s) for batch {batch.id}")
        return result

    async def tts(self, ctx: StageContext) -> StageResult:
        clip = ctx.clip
        if not clip.script_spoken:
            raise StageError("No script available for voice generation", retryable=False)

        try:
            voice = await self.providers.voice.synthesize(clip.script_spoken, ctx.payload.get("voice"))
        except ProviderError as e:
            raise _provider_call_error(e) from e

        if not voice.get("audio_url"):
            raise StageError("Voice generation returned no audio")

        return StageResult(
            clip_fields={
                "voice_url": voice["audio_url"],
                "status": ClipStatus.RENDERING.value,
                "ui_state": ClipUIState.SUBMITTING.value,
            },
            next_jobs=[{"type": JobType.VIDEO, "clip_id": clip.id, "payload": {}}],
        )

    async def video(self, ctx: StageContext) -> StageResult:
        """Submit a render once, then poll it until completion.

        The task id is checkpointed before the first poll, so a retried or
        reset job resumes the same task instead of paying for a new one.
        """
        clip = ctx.clip
        engine = self.providers.video
        if not clip.video_prompt:
            raise StageError("No video prompt available", retryable=False)

        task_id = clip.provider_task_id
        if task_id:
            logger.info(f"Resuming video task {task_id} for clip {clip.id}")
        else:
            try:
                task_id = await engine.submit(clip.video_prompt, VIDEO_DURATION_SECONDS, VIDEO_ASPECT_RATIO)
            except ProviderError as e:
                if e.provider_may_have_charged:
                    ctx.checkpoint(charged_state=ChargedState.CHARGED.value)
                raise _provider_call_error(e) from e
            ctx.checkpoint(
                provider=engine.name,
                provider_task_id=task_id,
                charged_state=ChargedState.CHARGED.value,
                ui_state=ClipUIState.RENDERING.value,
            )
            logger.info(f"Submitted video task {task_id} for clip {clip.id}")

        started = ctx.clock()
        delayed = clip.ui_state == ClipUIState.RENDERING_DELAYED.value
        while True:
            status = await engine.poll(task_id)
            state = status.get("status")

            if state == "completed":
                if not status.get("video_url"):
                    raise StageError("Video task completed without a video URL", provider_may_have_charged=True)
                return StageResult(
                    clip_fields={
                        "raw_video_url": status["video_url"],
                        "status": ClipStatus.ASSEMBLING.value,
                        "ui_state": ClipUIState.ASSEMBLING.value,
                        "ui_message": None,
                    },
                    next_jobs=[{"type": JobType.ASSEMBLE, "clip_id": clip.id, "payload": {}}],
                )

            if state == "failed":
                # A retry must submit a fresh task
                ctx.checkpoint(provider_task_id=None)
                reason = status.get("error") or "unknown error"
                raise StageError(f"Video generation failed: {reason}", provider_may_have_charged=True)

            elapsed = ctx.clock() - started
            if elapsed >= self.poll_timeout:
                raise StageError(
                    f"Video generation timed out after {int(elapsed)} seconds",
                    provider_may_have_charged=True,
                )
            if not delayed and elapsed >= self.delayed_after:
                ctx.checkpoint(ui_state=ClipUIState.RENDERING_DELAYED.value, ui_message=DELAYED_MESSAGE)
                delayed = True

            ctx.heartbeat()
            await ctx.sleep(self.poll_interval)

    async def assemble(self, ctx: StageContext) -> StageResult:
        clip = ctx.clip
        if not clip.raw_video_url:
            raise StageError("No rendered video to assemble", retryable=False)

        try:
            assembled = await self.providers.assembly.assemble(
                clip.raw_video_url, clip.voice_url, clip.on_screen_text_json
            )
        except ProviderError as e:
            raise _provider_call_error(e) from e

        if not assembled.get("final_url"):
            raise StageError("Assembly returned no output", provider_may_have_charged=True)

        return StageResult(
            clip_fields={"final_url": assembled["final_url"]},
            completes_clip=True,
        )

    async def image_compile(self, ctx: StageContext) -> StageResult:
        """Write one image prompt per open clip from the batch's image pack."""
        batch = ctx.batch
        clips = ctx.open_clips()
        intent_text = ctx.payload.get("intent_text") or batch.intent_text
        variations = image_pack_for(ctx.payload.get("image_pack"), batch.resolved_preset_key)

        result = StageResult()
        for index, clip in enumerate(clips):
            variation = variations[index % len(variations)]
            try:
                prompt = await self.providers.script.generate_image_prompt(
                    intent_text, variation.prompt_suffix, research=batch.research_json
                )
            except ProviderError as e:
                raise _provider_call_error(e) from e

            result.clip_updates[clip.id] = {
                "image_prompt": prompt,
                "image_type": variation.type,
                "aspect_ratio": variation.aspect_ratio,
                "status": ClipStatus.GENERATING.value,
                "ui_state": ClipUIState.RENDERING.value,
            }
            result.next_jobs.append(
                {
                    "type": JobType.IMAGE,
                    "clip_id": clip.id,
                    "payload": {
                        "prompt": prompt,
                        "image_type": variation.type,
                        "aspect_ratio": variation.aspect_ratio,
                    },
                }
            )
        return result

    async def image(self, ctx: StageContext) -> StageResult:
        clip = ctx.clip
        prompt = ctx.payload.get("prompt") or clip.image_prompt
        if not prompt:
            raise StageError("No image prompt available", retryable=False)
        aspect_ratio = ctx.payload.get("aspect_ratio") or clip.aspect_ratio or "1:1"

        try:
            generated = await self.providers.image.generate(prompt, aspect_ratio)
        except ProviderError as e:
            raise _provider_call_error(e) from e

        if not generated.get("image_url"):
            raise StageError("Image generation returned no image")

        return StageResult(
            clip_fields={
                "image_url": generated["image_url"],
                "image_prompt": prompt,
                "aspect_ratio": aspect_ratio,
            },
            completes_clip=True,
        )


def compile_stage_for(batch: Batch) -> JobType:
    """The scripting stage that follows research for this batch's output type."""
    return JobType.IMAGE_COMPILE if batch.output_type == OutputType.IMAGE.value else JobType.COMPILE
