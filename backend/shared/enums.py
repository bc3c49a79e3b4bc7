"""
Enums and constants used across the application.
"""

from enum import Enum


class BatchStatus(str, Enum):
    """Lifecycle states of a batch."""

    QUEUED = "queued"
    RESEARCHING = "researching"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_BATCH_STATUSES = frozenset({BatchStatus.QUEUED, BatchStatus.RESEARCHING, BatchStatus.RUNNING})


class ClipStatus(str, Enum):
    """Internal processing status of a clip, used for pipeline branching."""

    PLANNED = "planned"
    SCRIPTING = "scripting"
    VO = "vo"
    RENDERING = "rendering"
    ASSEMBLING = "assembling"
    GENERATING = "generating"
    READY = "ready"
    FAILED = "failed"


TERMINAL_CLIP_STATUSES = frozenset({ClipStatus.READY, ClipStatus.FAILED})


class ClipUIState(str, Enum):
    """User-facing clip state shown in place of the internal status."""

    QUEUED = "queued"
    WRITING = "writing"
    VOICING = "voicing"
    SUBMITTING = "submitting"
    RENDERING = "rendering"
    RENDERING_DELAYED = "rendering_delayed"
    ASSEMBLING = "assembling"
    READY = "ready"
    FAILED_NOT_CHARGED = "failed_not_charged"
    FAILED_CHARGED = "failed_charged"
    CANCELED = "canceled"


class ChargedState(str, Enum):
    """Whether an upstream provider may have billed for a clip's failed attempt."""

    UNKNOWN = "unknown"
    NOT_CHARGED = "not_charged"
    CHARGED = "charged"


class JobType(str, Enum):
    """Pipeline stages a job can execute."""

    RESEARCH = "research"
    COMPILE = "compile"
    TTS = "tts"
    VIDEO = "video"
    ASSEMBLE = "assemble"
    IMAGE = "image"
    IMAGE_COMPILE = "image_compile"


# Stages that operate over the whole batch and therefore carry no clip reference.
BATCH_LEVEL_JOB_TYPES = frozenset({JobType.RESEARCH, JobType.COMPILE, JobType.IMAGE_COMPILE})


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    CHARGED = "charged"
    FAILED = "failed"
    REFUNDED = "refunded"
    FREE = "free"


class OutputType(str, Enum):
    VIDEO = "video"
    IMAGE = "image"


class QualityMode(str, Enum):
    """Quality tiers that select the model used for every stage."""

    ECONOMY = "economy"
    BALANCED = "balanced"
    PREMIUM = "premium"


class TestMode(str, Enum):
    """What dimension the variants of a batch are meant to test."""

    HOOK_TEST = "hook_test"
    ANGLE_TEST = "angle_test"
    FORMAT_TEST = "format_test"


class ImageType(str, Enum):
    PRODUCT = "product"
    LIFESTYLE = "lifestyle"
    AD = "ad"
    UGC = "ugc"
    HERO = "hero"
    CUSTOM = "custom"


class TransactionType(str, Enum):
    """Kinds of credit ledger movements."""

    PURCHASE = "purchase"
    GENERATION = "generation"
    REFUND = "refund"
    BONUS = "bonus"
    ADJUSTMENT = "adjustment"


ALLOWED_BATCH_SIZES = (2, 4, 6, 8)
MAX_IMAGE_PROMPTS = 12
