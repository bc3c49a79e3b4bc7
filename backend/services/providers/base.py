from abc import ABC, abstractmethod
from typing import Any


class ResearchEngine(ABC):
    """Abstract base class for trend research providers."""

    name = "base"

    @abstractmethod
    async def research(self, intent_text: str, method: str, **kwargs: Any) -> dict[str, Any]:
        """Collect context for an intent. Returns a JSON-serialisable dict."""
        pass


class ScriptEngine(ABC):
    """Abstract base class for script writers."""

    name = "base"

    @abstractmethod
    async def generate_script(
        self,
        brief: dict[str, Any],
        research: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Write one variant. Returns script_spoken, on_screen_text and video_prompt."""
        pass

    async def generate_image_prompt(
        self,
        intent_text: str,
        style_suffix: str,
        research: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> str:
        """Compose an image prompt. Drivers may override to rewrite it with a model."""
        return f"{intent_text.strip()}, {style_suffix}"


class VoiceEngine(ABC):
    """Abstract base class for voice-over providers."""

    name = "base"

    @abstractmethod
    async def synthesize(self, text: str, voice: str | None = None, **kwargs: Any) -> dict[str, Any]:
        """Synthesize speech. Returns a dict with audio_url and duration."""
        pass


class VideoEngine(ABC):
    """Abstract base class for task-based video renderers.

    Rendering is split into submit and poll so a task id can be persisted
    between the two and polling resumed after an interruption.
    """

    name = "base"

    @abstractmethod
    async def submit(self, prompt: str, duration_seconds: int = 15, aspect_ratio: str = "9:16", **kwargs: Any) -> str:
        """Start a render and return the provider task id."""
        pass

    @abstractmethod
    async def poll(self, task_id: str) -> dict[str, Any]:
        """Return {"status": pending|processing|completed|failed, "video_url", "error"}."""
        pass


class AssemblyEngine(ABC):
    """Abstract base class for final video assembly (voice, footage and captions)."""

    name = "base"

    @abstractmethod
    async def assemble(
        self,
        video_url: str,
        voice_url: str | None,
        on_screen_text: list[dict[str, Any]] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Combine inputs into a final render. Returns a dict with final_url."""
        pass


class ImageEngine(ABC):
    """Abstract base class for image generators."""

    name = "base"

    @abstractmethod
    async def generate(self, prompt: str, aspect_ratio: str = "1:1", **kwargs: Any) -> dict[str, Any]:
        """Generate one image. Returns a dict with image_url."""
        pass
