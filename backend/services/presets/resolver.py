"""
Preset and method resolution.

Turns a requested preset key into the concrete generation method for a batch.
The AUTO sentinel scores the intent text against every content method
(keyword hit = 2 points, intent phrase hit = 1 point) and picks the best one;
image batches use a keyword-to-pack mapping instead.
"""

import re
from typing import Any

from pydantic import BaseModel

from shared.enums import OutputType

AUTO_PRESET = "AUTO"
DEFAULT_METHOD = "FOUNDERS"
DEFAULT_IMAGE_PRESET = "PRODUCT_CLEAN"
TARGET_DURATION_SECONDS = 20


class MethodPattern(BaseModel):
    keywords: list[str]
    intent: list[str]


class MethodConfig(BaseModel):
    hook_formula: str
    pacing: str
    structure: list[str]
    tone: str
    visual_direction: str


# Declaration order breaks scoring ties.
METHOD_DETECTION_PATTERNS: dict[str, MethodPattern] = {
    "FOUNDERS": MethodPattern(
        keywords=[
            "founder", "ceo", "built", "company", "startup", "learned", "years", "mistake",
            "lost", "made", "business", "entrepreneur", "raised", "sold", "scaled",
        ],
        intent=["authority", "experience", "business advice", "lessons", "wisdom", "mentor"],
    ),
    "PODCAST": MethodPattern(
        keywords=[
            "opinion", "think", "hot take", "unpopular", "debate", "disagree", "actually",
            "controversial", "honestly", "truth is",
        ],
        intent=["reaction", "commentary", "discussion", "controversial", "perspective"],
    ),
    "DISCOVERY": MethodPattern(
        keywords=[
            "found", "discovered", "realize", "nobody", "secret", "hidden", "hack", "trick",
            "just learned", "did you know", "turns out", "apparently",
        ],
        intent=["revelation", "surprise", "education", "tip", "insight", "breakthrough"],
    ),
    "CAMERA_PUT_DOWN": MethodPattern(
        keywords=[
            "quick", "real quick", "listen", "need to", "stop", "wait", "urgent", "important",
            "right now", "immediately",
        ],
        intent=["urgent", "casual", "authentic", "raw", "breaking", "news"],
    ),
    "SENSORY": MethodPattern(
        keywords=[
            "satisfying", "texture", "asmr", "watch", "look at", "beautiful", "mesmerizing",
            "soothing", "calming", "relaxing", "smooth",
        ],
        intent=["visual", "sensory", "relaxing", "aesthetic", "oddly satisfying"],
    ),
    "DELAYED_GRATIFICATION": MethodPattern(
        keywords=[
            "wait for it", "watch until", "the end", "worth it", "reveal", "transformation",
            "before and after", "result", "outcome", "payoff",
        ],
        intent=["suspense", "payoff", "before/after", "buildup", "transformation"],
    ),
}

METHOD_CONFIGS: dict[str, MethodConfig] = {
    "FOUNDERS": MethodConfig(
        hook_formula="Authority statement + personal stake",
        pacing="Measured, confident. Let points land.",
        structure=[
            "[0-3s] Hook with credibility/stakes",
            "[3-10s] Insight or contrarian take",
            "[10-20s] Proof/example",
            "[20-25s] Viewer takeaway",
        ],
        tone="Authoritative but approachable. Mentor energy.",
        visual_direction="Professional setting, stable shot, confident posture",
    ),
    "PODCAST": MethodConfig(
        hook_formula="Hot take or opinion that demands response",
        pacing="Conversational, natural pauses for emphasis",
        structure=[
            "[0-2s] Bold hot take",
            "[2-10s] Your reasoning",
            "[10-18s] Evidence/example",
            "[18-22s] Challenge to viewer",
        ],
        tone="Opinionated but not aggressive. Inviting debate.",
        visual_direction="Talking head, expressive, could be split-screen",
    ),
    "DISCOVERY": MethodConfig(
        hook_formula="Curiosity gap - 'I just found out...'",
        pacing="Building excitement. Start curious, end amazed.",
        structure=[
            "[0-2s] Curiosity hook",
            "[2-8s] Discovery context",
            "[8-15s] The reveal",
            "[15-20s] Why it matters",
        ],
        tone="Genuinely surprised, sharing something exciting.",
        visual_direction="Casual setting, authentic reactions, natural lighting",
    ),
    "CAMERA_PUT_DOWN": MethodConfig(
        hook_formula="Mid-sentence start, already in motion",
        pacing="Fast, urgent, no filler. Get to point immediately.",
        structure=[
            "[0-1s] Already mid-thought",
            "[1-8s] The point directly",
            "[8-12s] Quick proof",
            "[12-15s] Rapid CTA",
        ],
        tone="Urgent, casual, caught-in-the-moment.",
        visual_direction="Handheld shake, messy authentic environment",
    ),
    "SENSORY": MethodConfig(
        hook_formula="Visual intrigue - 'Watch this...'",
        pacing="Slow, deliberate, ASMR-like. Let visuals breathe.",
        structure=[
            "[0-3s] Visual hook",
            "[3-12s] Slow reveal",
            "[12-18s] Peak satisfaction",
            "[18-22s] Soft close",
        ],
        tone="Calm, meditative. Let visuals do the work.",
        visual_direction="Extreme close-ups, textures, macro-style",
    ),
    "DELAYED_GRATIFICATION": MethodConfig(
        hook_formula="Tease the payoff - 'Wait for it...'",
        pacing="Tension building. Each beat raises stakes.",
        structure=[
            "[0-3s] Tease payoff",
            "[3-10s] Setup/before state",
            "[10-18s] Building tension",
            "[18-25s] The reveal",
        ],
        tone="Building anticipation. Make them NEED to see end.",
        visual_direction="Dynamic, before/after framing, cinematic reveal",
    ),
}

assert list(METHOD_CONFIGS) == list(METHOD_DETECTION_PATTERNS), "every method needs a config"

LEGACY_PRESET_KEYS = frozenset(
    {
        "RAW_UGC_V1",
        "TIKTOK_AD_V1",
        "PODCAST_V1",
        "SENSORY_V1",
        "CLEAN_V1",
        "STORY_V1",
        "HOOK_V1",
        "MINIMAL_V1",
    }
)

# Checked in order: ad wording wins over lifestyle wording, which wins over product wording.
IMAGE_PRESET_KEYWORDS: list[tuple[str, list[str]]] = [
    ("AD_BOLD", ["ad", "advertisement", "promo", "sale", "offer"]),
    ("PRODUCT_LIFESTYLE", ["lifestyle", "use", "wearing", "using", "action"]),
    ("PRODUCT_CLEAN", ["product", "item", "sell", "listing", "shop"]),
]

IMAGE_PRESET_KEYS = frozenset(key for key, _ in IMAGE_PRESET_KEYWORDS)

KNOWN_PRESET_KEYS = (
    frozenset({AUTO_PRESET}) | frozenset(METHOD_CONFIGS) | LEGACY_PRESET_KEYS | IMAGE_PRESET_KEYS
)


class ImageVariation(BaseModel):
    type: str
    prompt_suffix: str
    aspect_ratio: str


def _variations(rows: list[tuple[str, str, str]]) -> list[ImageVariation]:
    return [ImageVariation(type=t, prompt_suffix=s, aspect_ratio=a) for t, s, a in rows]


IMAGE_PACKS: dict[str, list[ImageVariation]] = {
    "auto": _variations(
        [
            ("product_white", "professional product photography, pure white background, soft studio lighting, e-commerce ready, high resolution, centered", "1:1"),
            ("product_gradient", "professional product photo, subtle gradient background, premium feel, studio lighting", "1:1"),
            ("product_shadow", "product photography, white background with soft shadow, clean minimal aesthetic", "1:1"),
            ("lifestyle_use", "lifestyle photography, product in use, natural setting, warm lighting, aspirational", "4:5"),
            ("lifestyle_flat", "flat lay photography, product with complementary items, top-down view, styled composition", "1:1"),
            ("lifestyle_hands", "hands holding product, natural lighting, authentic feel, lifestyle context", "4:5"),
            ("ad_bold", "bold advertisement style, vibrant colors, dynamic composition, eye-catching", "9:16"),
            ("ad_minimal", "minimal advertisement, clean design, lots of white space, elegant", "1:1"),
            ("ad_ugc", "user-generated content style, authentic, casual setting, relatable", "9:16"),
        ]
    ),
    "product": _variations(
        [
            ("front", "product front view, white background, studio lighting, e-commerce", "1:1"),
            ("angle", "product 3/4 angle view, white background, showing depth", "1:1"),
            ("detail", "product detail close-up, macro photography, showing texture and quality", "1:1"),
            ("top", "product top-down view, white background, flat lay style", "1:1"),
            ("side", "product side profile, white background, clean silhouette", "1:1"),
            ("gradient", "product on gradient background, premium feel, subtle shadow", "1:1"),
            ("floating", "product floating with soft shadow, clean white background", "1:1"),
            ("group", "product with accessories or variants, styled grouping", "16:9"),
            ("hero", "hero product shot, dramatic lighting, premium quality", "16:9"),
        ]
    ),
    "lifestyle": _variations(
        [
            ("home", "product in modern home setting, natural daylight, cozy atmosphere", "4:5"),
            ("outdoor", "product outdoors, natural environment, golden hour lighting", "4:5"),
            ("work", "product in workspace/office setting, professional environment", "4:5"),
            ("gym", "product in gym/fitness setting, active lifestyle", "4:5"),
            ("travel", "product in travel context, adventure setting", "4:5"),
            ("morning", "product in morning routine context, soft morning light", "4:5"),
            ("hands", "hands using product, authentic moment, natural lighting", "4:5"),
            ("table", "product on styled table, lifestyle flat lay, curated items", "1:1"),
            ("action", "product in action/use, dynamic moment, lifestyle photography", "9:16"),
        ]
    ),
    "ads": _variations(
        [
            ("bold_vertical", "bold advertisement, vibrant colors, product prominent, vertical format", "9:16"),
            ("bold_square", "bold advertisement, eye-catching colors, centered product", "1:1"),
            ("minimal_clean", "minimal advertisement, white space, elegant product placement", "1:1"),
            ("minimal_text", "minimal design with space for text overlay, clean aesthetic", "9:16"),
            ("ugc_authentic", "user-generated content style ad, authentic feel, casual", "9:16"),
            ("ugc_review", "testimonial style, product with 5-star feeling, trustworthy", "1:1"),
            ("sale_urgent", "sale/promo style, urgent feel, bold colors, exciting", "1:1"),
            ("premium", "premium brand advertisement, luxury feel, sophisticated", "4:5"),
            ("comparison", "before/after or comparison style, clear benefit shown", "1:1"),
        ]
    ),
    "social": _variations(
        [
            ("ig_feed_1", "Instagram-worthy product shot, aesthetic, highly shareable", "1:1"),
            ("ig_feed_2", "Instagram lifestyle post, aspirational, engagement-focused", "4:5"),
            ("ig_feed_3", "Instagram aesthetic flat lay, curated items, pleasing composition", "1:1"),
            ("story_1", "Instagram Story format, vertical, eye-catching, swipe-up ready", "9:16"),
            ("story_2", "Story-friendly product showcase, bold, quick-glance appeal", "9:16"),
            ("story_3", "Behind-the-scenes style Story, authentic, casual feel", "9:16"),
            ("tiktok_1", "TikTok cover image, attention-grabbing, vertical format", "9:16"),
            ("tiktok_2", "Viral-worthy product shot, bold colors, Gen-Z aesthetic", "9:16"),
            ("tiktok_3", "TikTok unboxing style, excitement, anticipation", "9:16"),
        ]
    ),
}

# Pack used by image_compile when the request leaves image_pack on "auto" but the preset is explicit
PRESET_IMAGE_PACKS = {
    "AD_BOLD": "ads",
    "PRODUCT_LIFESTYLE": "lifestyle",
    "PRODUCT_CLEAN": "product",
}


def score_methods(intent_text: str) -> dict[str, int]:
    """Score every content method against the intent text."""
    text = intent_text.lower()
    scores: dict[str, int] = {}
    for method, pattern in METHOD_DETECTION_PATTERNS.items():
        score = sum(2 for keyword in pattern.keywords if keyword in text)
        score += sum(1 for phrase in pattern.intent if phrase in text)
        scores[method] = score
    return scores


def detect_method(intent_text: str) -> str:
    """Pick the best scoring method; first declared wins ties, zero falls back to the default."""
    best_method, best_score = DEFAULT_METHOD, 0
    for method, score in score_methods(intent_text).items():
        if score > best_score:
            best_method, best_score = method, score
    return best_method


def detect_image_preset(intent_text: str) -> str:
    text = intent_text.lower()
    for preset_key, keywords in IMAGE_PRESET_KEYWORDS:
        if any(re.search(rf"\b{re.escape(keyword)}\b", text) for keyword in keywords):
            return preset_key
    return DEFAULT_IMAGE_PRESET


def is_known_preset(preset_key: str) -> bool:
    return preset_key in KNOWN_PRESET_KEYS


def resolve_preset(intent_text: str, requested_preset: str, output_type: OutputType) -> str:
    """Resolve the requested preset into the concrete method for a batch."""
    if requested_preset != AUTO_PRESET:
        return requested_preset
    if OutputType(output_type) == OutputType.IMAGE:
        return detect_image_preset(intent_text)
    return detect_method(intent_text)


def method_config_for(preset_key: str) -> MethodConfig:
    return METHOD_CONFIGS.get(preset_key, METHOD_CONFIGS[DEFAULT_METHOD])


def build_structured_prompt(
    intent_text: str,
    method: str,
    mode: str,
    variant_index: int,
    batch_size: int,
) -> dict[str, Any]:
    """Structured generation brief handed to the script stage."""
    return {
        "raw_intent": intent_text,
        "topic": intent_text.strip(),
        "method": method,
        "method_config": method_config_for(method).model_dump(),
        "context": {
            "variant_number": variant_index + 1,
            "total_variants": batch_size,
            "test_mode": mode,
            "target_duration_sec": TARGET_DURATION_SECONDS,
        },
    }


def image_pack_for(requested_pack: str | None, preset_key: str) -> list[ImageVariation]:
    """Variations for an image batch, preferring an explicitly requested pack."""
    pack = (requested_pack or "auto").lower()
    if pack == "auto":
        pack = PRESET_IMAGE_PACKS.get(preset_key, "auto")
    return IMAGE_PACKS.get(pack, IMAGE_PACKS["auto"])
