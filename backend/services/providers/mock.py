"""Deterministic offline providers used in development and tests."""

from typing import Any
from uuid import uuid4

from services.providers.base import (
    AssemblyEngine,
    ImageEngine,
    ResearchEngine,
    ScriptEngine,
    VideoEngine,
    VoiceEngine,
)

PLACEHOLDER_VIDEO_URL = "https://storage.googleapis.com/gtv-videos-bucket/sample/ForBiggerMeltdowns.mp4"
PLACEHOLDER_AUDIO_URL = "https://storage.googleapis.com/feedr-mock/voice.mp3"
PLACEHOLDER_IMAGE_URL = "https://storage.googleapis.com/feedr-mock/image.png"

HOOK_TEMPLATES = [
    "Wait, you need to see this...",
    "Nobody talks about this but...",
    "Here's what they don't tell you about {topic}",
    "I tested {topic} so you don't have to",
    "Stop scrolling if you're dealing with {topic}",
    "The {topic} secret nobody shares",
    "Why is everyone ignoring {topic}?",
    "This changes everything about {topic}",
    "I was today years old when I learned this about {topic}",
    "POV: You just discovered {topic}",
    "The truth about {topic} that shocked me",
    "If you're struggling with {topic}, watch this",
    "Real talk about {topic}",
    "This {topic} hack is insane",
    "My honest experience with {topic}",
]


class MockResearchEngine(ResearchEngine):
    name = "mock"

    async def research(self, intent_text: str, method: str, **kwargs: Any) -> dict[str, Any]:
        topic = " ".join(intent_text.split()[:3])
        return {
            "topic": topic,
            "method": method,
            "trending_hooks": [template.replace("{topic}", topic) for template in HOOK_TEMPLATES[:3]],
            "source": self.name,
        }


class MockScriptEngine(ScriptEngine):
    name = "mock"

    async def generate_script(
        self,
        brief: dict[str, Any],
        research: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        intent_text = brief.get("topic") or brief.get("raw_intent", "")
        variant_index = brief.get("context", {}).get("variant_number", 1) - 1
        topic = " ".join(intent_text.split()[:3])
        hook = HOOK_TEMPLATES[variant_index % len(HOOK_TEMPLATES)].replace("{topic}", topic)

        script_spoken = (
            f"{hook} So I've been researching {intent_text} for weeks now, and what I found is "
            "actually surprising. Most people think they know about this, but they're missing the "
            "key insight. Let me break it down for you real quick."
        )
        on_screen_text = [
            {"t": 0.0, "text": hook},
            {"t": 2.5, "text": "Here's what I found..."},
            {"t": 5.0, "text": f"The truth about {topic}"},
            {"t": 7.5, "text": "Watch till the end"},
        ]
        video_prompt = (
            "A person talking directly to camera in vertical smartphone format, casual setting, "
            f"warm lighting. The topic is about {intent_text}. Natural hand gestures, authentic "
            "feel, 9:16 aspect ratio."
        )
        return {
            "script_spoken": script_spoken,
            "on_screen_text": on_screen_text,
            "video_prompt": video_prompt,
        }


class MockVoiceEngine(VoiceEngine):
    name = "mock"

    async def synthesize(self, text: str, voice: str | None = None, **kwargs: Any) -> dict[str, Any]:
        # ~15 characters per second of speech
        return {"audio_url": PLACEHOLDER_AUDIO_URL, "duration": round(len(text) / 15, 2)}


class MockVideoEngine(VideoEngine):
    """Completes every task on the first poll."""

    name = "mock"

    def __init__(self) -> None:
        self.submitted: dict[str, dict[str, Any]] = {}

    async def submit(self, prompt: str, duration_seconds: int = 15, aspect_ratio: str = "9:16", **kwargs: Any) -> str:
        task_id = f"mock-{uuid4().hex[:12]}"
        self.submitted[task_id] = {"prompt": prompt, "duration": duration_seconds, "aspect_ratio": aspect_ratio}
        return task_id

    async def poll(self, task_id: str) -> dict[str, Any]:
        return {"status": "completed", "video_url": PLACEHOLDER_VIDEO_URL}


class MockAssemblyEngine(AssemblyEngine):
    name = "mock"

    async def assemble(
        self,
        video_url: str,
        voice_url: str | None,
        on_screen_text: list[dict[str, Any]] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        return {"final_url": video_url}


class MockImageEngine(ImageEngine):
    name = "mock"

    async def generate(self, prompt: str, aspect_ratio: str = "1:1", **kwargs: Any) -> dict[str, Any]:
        return {"image_url": f"{PLACEHOLDER_IMAGE_URL}?ar={aspect_ratio}"}
