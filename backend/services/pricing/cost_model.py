"""
Cost model for batch generation.

Prices a batch from its quality tier, output type and item count. All amounts
are integer cents; intermediate breakdown figures keep two decimals. Rounding
is half-up throughout so quotes match the figures shown to users.
"""

import math
import re
from typing import Any

from pydantic import BaseModel, Field

from shared.enums import OutputType, QualityMode
from shared.utils import config

# Script models: cents per 1M tokens
SCRIPT_MODEL_COSTS: dict[str, dict[str, float]] = {
    "claude-3-haiku-20240307": {"input": 25, "output": 125, "quality": 0.7},
    "claude-3-5-haiku-20241022": {"input": 100, "output": 500, "quality": 0.8},
    "claude-3-5-sonnet-20241022": {"input": 300, "output": 1500, "quality": 0.95},
    "claude-sonnet-4-20250514": {"input": 300, "output": 1500, "quality": 0.95},
    "gpt-4o-mini": {"input": 15, "output": 60, "quality": 0.75},
    "gpt-4o": {"input": 250, "output": 1000, "quality": 0.9},
    "gpt-4-turbo": {"input": 1000, "output": 3000, "quality": 0.85},
}

# Voice models: cents per character
VOICE_MODEL_COSTS: dict[str, dict[str, float]] = {
    "elevenlabs-standard": {"per_char": 0.03, "quality": 0.95},
    "elevenlabs-turbo": {"per_char": 0.015, "quality": 0.85},
    "openai-tts-1": {"per_char": 0.015, "quality": 0.75},
    "openai-tts-1-hd": {"per_char": 0.03, "quality": 0.85},
}

# Video models: cents per second of footage
VIDEO_MODEL_COSTS: dict[str, dict[str, float]] = {
    "sora": {"per_second": 5, "quality": 0.95},
    "runway-gen3": {"per_second": 2.5, "quality": 0.85},
    "runway-gen2": {"per_second": 1.5, "quality": 0.7},
}

# Image models: cents per image
IMAGE_MODEL_COSTS: dict[str, dict[str, float]] = {
    "dall-e-3-hd": {"per_image": 12, "quality": 0.95},
    "dall-e-3": {"per_image": 8, "quality": 0.9},
    "dall-e-2": {"per_image": 2, "quality": 0.7},
    "flux-1.1-pro": {"per_image": 4, "quality": 0.9},
    "flux-schnell": {"per_image": 0.3, "quality": 0.75},
}

# Assembly services: cents per render
ASSEMBLY_COSTS: dict[str, dict[str, float]] = {
    "shotstack": {"per_render": 5, "quality": 0.9},
    "creatomate": {"per_render": 4, "quality": 0.85},
}

DEFAULT_ASSEMBLY_SERVICE = "shotstack"


class QualityTier(BaseModel):
    """Model selection for one quality tier."""

    label: str
    description: str
    script_model: str
    voice_model: str
    video_model: str
    image_model: str


QUALITY_TIERS: dict[QualityMode, QualityTier] = {
    QualityMode.ECONOMY: QualityTier(
        label="Economy",
        description="Fastest & cheapest, good for testing",
        script_model="gpt-4o-mini",
        voice_model="openai-tts-1",
        video_model="runway-gen2",
        image_model="dall-e-2",
    ),
    QualityMode.BALANCED: QualityTier(
        label="Balanced",
        description="Great quality, reasonable cost",
        script_model="claude-3-5-haiku-20241022",
        voice_model="elevenlabs-turbo",
        video_model="runway-gen3",
        image_model="dall-e-3",
    ),
    QualityMode.PREMIUM: QualityTier(
        label="Premium",
        description="Best quality, higher cost",
        script_model="claude-sonnet-4-20250514",
        voice_model="elevenlabs-standard",
        video_model="sora",
        image_model="dall-e-3-hd",
    ),
}

assert set(QUALITY_TIERS) == set(QualityMode), "every quality mode needs a tier"
for _tier in QUALITY_TIERS.values():
    assert _tier.script_model in SCRIPT_MODEL_COSTS
    assert _tier.voice_model in VOICE_MODEL_COSTS
    assert _tier.video_model in VIDEO_MODEL_COSTS
    assert _tier.image_model in IMAGE_MODEL_COSTS


class CostEstimate(BaseModel):
    total: int
    breakdown: dict[str, float]


class BatchCostEstimate(BaseModel):
    """Quote for a whole batch."""

    quality_mode: QualityMode
    output_type: OutputType
    count: int
    total_cents: int = Field(..., description="Base cost of the batch")
    per_item_cents: int
    user_charge_cents: int = Field(..., description="Base cost marked up by the upsell multiplier")
    breakdown: dict[str, float]


class ComplexityAnalysis(BaseModel):
    complexity: str
    suggested_mode: QualityMode
    reason: str


def round_half_up(value: float, digits: int = 0) -> float:
    """Round halves away from zero for non-negative amounts."""
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def _cents(value: float) -> int:
    return int(round_half_up(value))


def estimate_video_cost(
    mode: QualityMode, duration_seconds: int = 15, script_length: int = 150
) -> CostEstimate:
    """Estimate the base cost of producing one video."""
    tier = QUALITY_TIERS[QualityMode(mode)]

    # ~500 input tokens and ~200 output tokens per script
    script_costs = SCRIPT_MODEL_COSTS[tier.script_model]
    script_cost = ((500 * script_costs["input"] + 200 * script_costs["output"]) / 1_000_000) * 100
    voice_cost = script_length * VOICE_MODEL_COSTS[tier.voice_model]["per_char"]
    video_cost = duration_seconds * VIDEO_MODEL_COSTS[tier.video_model]["per_second"]
    assembly_cost = ASSEMBLY_COSTS[DEFAULT_ASSEMBLY_SERVICE]["per_render"]

    breakdown = {
        "script": round_half_up(script_cost, 2),
        "voice": round_half_up(voice_cost, 2),
        "video": round_half_up(video_cost, 2),
        "assembly": assembly_cost,
    }
    return CostEstimate(total=_cents(sum(breakdown.values())), breakdown=breakdown)


def estimate_image_cost(mode: QualityMode, count: int = 9) -> CostEstimate:
    """Estimate the base cost of producing `count` images."""
    tier = QUALITY_TIERS[QualityMode(mode)]

    # ~300 input tokens and ~100 output tokens per image prompt
    script_costs = SCRIPT_MODEL_COSTS[tier.script_model]
    script_cost = ((300 * script_costs["input"] + 100 * script_costs["output"]) / 1_000_000) * 100 * count
    image_cost = count * IMAGE_MODEL_COSTS[tier.image_model]["per_image"]

    breakdown = {
        "script": round_half_up(script_cost, 2),
        "images": round_half_up(image_cost, 2),
    }
    return CostEstimate(total=_cents(sum(breakdown.values())), breakdown=breakdown)


def estimate_user_charge(base_cost_cents: int, multiplier: float | None = None) -> int:
    """User-facing price for a base cost."""
    multiplier = config.upsell_multiplier if multiplier is None else multiplier
    return _cents(base_cost_cents * multiplier)


def compute_base_cost(user_charge_cents: int, multiplier: float | None = None) -> int:
    """Recover the base cost recorded against a user charge."""
    multiplier = config.upsell_multiplier if multiplier is None else multiplier
    return _cents(user_charge_cents / multiplier)


def estimate_batch_cost(mode: QualityMode, output_type: OutputType, batch_size: int) -> BatchCostEstimate:
    """Quote a batch; the user charge derived here is what gets debited."""
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    if OutputType(output_type) == OutputType.IMAGE:
        estimate = estimate_image_cost(mode, batch_size)
        total = estimate.total
        per_item = _cents(estimate.total / batch_size)
    else:
        estimate = estimate_video_cost(mode)
        total = estimate.total * batch_size
        per_item = estimate.total

    return BatchCostEstimate(
        quality_mode=mode,
        output_type=output_type,
        count=batch_size,
        total_cents=total,
        per_item_cents=per_item,
        user_charge_cents=estimate_user_charge(total),
        breakdown=estimate.breakdown,
    )


_CREATIVE = re.compile(r"creative|unique|artistic|cinematic|premium|best|amazing|stunning", re.IGNORECASE)
_SPECIFIC = re.compile(r"exactly|specific|must|need|require", re.IGNORECASE)
_TECHNICAL = re.compile(r"4k|hdr|raw|professional|studio|high.?quality", re.IGNORECASE)


def analyze_complexity(prompt: str) -> ComplexityAnalysis:
    """Suggest a quality tier from how demanding a prompt reads."""
    words = len(prompt.split())
    creative = bool(_CREATIVE.search(prompt))
    specific = bool(_SPECIFIC.search(prompt))
    technical = bool(_TECHNICAL.search(prompt))

    if words < 10 and not creative and not specific:
        return ComplexityAnalysis(
            complexity="simple",
            suggested_mode=QualityMode.ECONOMY,
            reason="Simple prompt, economy mode is sufficient",
        )
    if creative or technical or words > 30:
        return ComplexityAnalysis(
            complexity="complex",
            suggested_mode=QualityMode.PREMIUM,
            reason="Creative/technical requirements benefit from premium models",
        )
    return ComplexityAnalysis(
        complexity="moderate",
        suggested_mode=QualityMode.BALANCED,
        reason="Balanced mode offers good quality for this prompt",
    )


def describe_tiers() -> list[dict[str, Any]]:
    """Tier catalogue with the per-video price of each tier."""
    return [
        {
            "quality_mode": mode.value,
            **tier.model_dump(),
            "video_base_cents": estimate_video_cost(mode).total,
        }
        for mode, tier in QUALITY_TIERS.items()
    ]
