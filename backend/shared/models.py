from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "APIResponse",
    "BatchResponse",
    "BatchSnapshot",
    "BillingBreakdown",
    "ClipResponse",
    "ClipReviewRequest",
    "CostEstimateRequest",
    "CreditBalanceResponse",
    "CronRunResponse",
    "GenerateBatchRequest",
    "GenerateBatchResponse",
    "ImagePromptSpec",
    "ResetStuckRequest",
    "ResetStuckResponse",
    "StageResult",
    "TickResult",
    "WorkerRunRequest",
]


class APIResponse(BaseModel):
    """Standard API response wrapper."""

    success: bool = Field(default=True, description="Whether the operation was successful")
    message: str = Field(default="Operation completed successfully", description="Response message")
    data: dict[str, Any] | None = Field(None, description="Response data")


# Batch creation
class ImagePromptSpec(BaseModel):
    """A pre-generated image prompt; one image job is created per entry."""

    prompt: str = Field(..., min_length=1, max_length=4000)
    aspect_ratio: str = Field(default="1:1", alias="aspectRatio")
    type: str = Field(default="product")

    model_config = ConfigDict(populate_by_name=True)


class GenerateBatchRequest(BaseModel):
    # Enumerated fields stay plain strings so the lifecycle manager reports
    # unknown values as validation errors of its own.
    intent_text: str = Field(..., max_length=5000, description="What the variants should be about")
    preset_key: str = Field(default="AUTO", description="Method or preset key, AUTO to detect")
    mode: str = Field(default="hook_test", description="hook_test, angle_test or format_test")
    batch_size: int = Field(default=4, description="Number of variants: 2, 4, 6 or 8")
    output_type: str = Field(default="video", description="video or image")
    quality_mode: str = Field(default="balanced", description="economy, balanced or premium")
    image_type: str = Field(default="product")
    aspect_ratio: str = Field(default="1:1")
    image_pack: str = Field(default="auto")
    image_prompts: list[ImagePromptSpec] | None = None
    estimated_cost: int | None = Field(
        default=None, description="Quoted user charge in cents, computed by the cost model when omitted"
    )


class BillingBreakdown(BaseModel):
    base_cost_cents: int
    user_charge_cents: int
    quality_mode: str
    payment_status: str
    breakdown: dict[str, float] = Field(default_factory=dict)


class GenerateBatchResponse(BaseModel):
    batch_id: str
    output_type: str
    resolved_preset_key: str
    seed_job_type: str
    clip_count: int
    billing: BillingBreakdown


class CostEstimateRequest(BaseModel):
    quality_mode: str = "balanced"
    output_type: str = "video"
    batch_size: int = 4
    intent_text: str | None = Field(default=None, description="Optional prompt for a tier suggestion")


# Read models
class ClipResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    batch_id: str
    variant_id: str
    preset_key: str | None = None
    status: str
    ui_state: str
    ui_message: str | None = None
    script_spoken: str | None = None
    on_screen_text_json: list[dict[str, Any]] | None = None
    video_prompt: str | None = None
    voice_url: str | None = None
    raw_video_url: str | None = None
    final_url: str | None = None
    image_prompt: str | None = None
    image_type: str | None = None
    aspect_ratio: str | None = None
    image_url: str | None = None
    winner: bool = False
    killed: bool = False
    error: str | None = None
    charged_state: str
    refunded: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class BatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str | None = None
    intent_text: str
    preset_key: str
    resolved_preset_key: str
    mode: str
    batch_size: int
    output_type: str
    status: str
    quality_mode: str
    base_cost_cents: int
    user_charge_cents: int
    refunded_cents: int
    payment_status: str
    research_json: dict[str, Any] | None = None
    error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class BatchSnapshot(BaseModel):
    batch: BatchResponse
    clips: list[ClipResponse]
    jobs: dict[str, int]
    # Every clip is ready or failed, even if the batch is still running
    clips_settled: bool = False


class ClipReviewRequest(BaseModel):
    winner: bool | None = None
    killed: bool | None = None


class CreditBalanceResponse(BaseModel):
    user_id: str
    balance_cents: int


# Worker
class WorkerRunRequest(BaseModel):
    action: str = Field(default="run-once")


class StageResult(BaseModel):
    """Outcome of a successful stage handler call."""

    batch_fields: dict[str, Any] = Field(default_factory=dict)
    clip_fields: dict[str, Any] = Field(default_factory=dict)
    # Per-clip fields for stages that cover the whole batch, keyed by clip id
    clip_updates: dict[str, dict[str, Any]] = Field(default_factory=dict)
    # Each entry: {"type": JobType, "clip_id": str | None, "payload": dict}
    next_jobs: list[dict[str, Any]] = Field(default_factory=list)
    completes_clip: bool = False


class TickResult(BaseModel):
    processed: bool
    job_id: int | None = None
    job_type: str | None = None
    outcome: str | None = None  # done, retry, failed, cancelled
    error: str | None = None


class ResetStuckRequest(BaseModel):
    threshold_minutes: int | None = Field(default=None, gt=0)


class ResetStuckResponse(BaseModel):
    reset_count: int
    threshold_minutes: int


class CronRunResponse(BaseModel):
    success: bool = True
    jobs_processed: int
    elapsed_ms: int
    results: list[TickResult]
    stuck_jobs_reset: int | None = None
