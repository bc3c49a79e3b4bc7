"""Select stage providers by name from configuration."""

from typing import Any, Callable

from services.providers.base import (
    AssemblyEngine,
    ImageEngine,
    ResearchEngine,
    ScriptEngine,
    VideoEngine,
    VoiceEngine,
)
from services.providers.mock import (
    MockAssemblyEngine,
    MockImageEngine,
    MockResearchEngine,
    MockScriptEngine,
    MockVideoEngine,
    MockVoiceEngine,
)
from services.providers.openai_driver import OpenAIImageEngine, OpenAIScriptEngine, OpenAIVoiceEngine
from services.providers.sora_kie import KieSoraVideoEngine
from shared.config import ServiceConfig
from shared.utils import config, setup_logging

logger = setup_logging("provider-registry")


def _openai_key(cfg: ServiceConfig) -> str | None:
    return cfg.get("openai_api_key")


# name -> (factory, predicate telling whether the driver is usable with this config)
SCRIPT_DRIVERS: dict[str, tuple[Callable[[ServiceConfig], ScriptEngine], Callable[[ServiceConfig], Any]]] = {
    "mock": (lambda cfg: MockScriptEngine(), lambda cfg: True),
    "openai": (lambda cfg: OpenAIScriptEngine(_openai_key(cfg)), _openai_key),
}

VOICE_DRIVERS: dict[str, tuple[Callable[[ServiceConfig], VoiceEngine], Callable[[ServiceConfig], Any]]] = {
    "mock": (lambda cfg: MockVoiceEngine(), lambda cfg: True),
    "openai": (lambda cfg: OpenAIVoiceEngine(_openai_key(cfg), cfg.get("media_root", "/app/media")), _openai_key),
}

VIDEO_DRIVERS: dict[str, tuple[Callable[[ServiceConfig], VideoEngine], Callable[[ServiceConfig], Any]]] = {
    "mock": (lambda cfg: MockVideoEngine(), lambda cfg: True),
    "sora": (
        lambda cfg: KieSoraVideoEngine(cfg.get("kie_api_key"), cfg.get("kie_base_url")),
        lambda cfg: cfg.get("kie_api_key"),
    ),
}

ASSEMBLY_DRIVERS: dict[str, tuple[Callable[[ServiceConfig], AssemblyEngine], Callable[[ServiceConfig], Any]]] = {
    "mock": (lambda cfg: MockAssemblyEngine(), lambda cfg: True),
}

IMAGE_DRIVERS: dict[str, tuple[Callable[[ServiceConfig], ImageEngine], Callable[[ServiceConfig], Any]]] = {
    "mock": (lambda cfg: MockImageEngine(), lambda cfg: True),
    "openai": (lambda cfg: OpenAIImageEngine(_openai_key(cfg)), _openai_key),
}

RESEARCH_DRIVERS: dict[str, tuple[Callable[[ServiceConfig], ResearchEngine], Callable[[ServiceConfig], Any]]] = {
    "mock": (lambda cfg: MockResearchEngine(), lambda cfg: True),
}

DEFAULT_DRIVER = "mock"


def _select(kind: str, drivers: dict[str, tuple[Callable, Callable]], name: str, cfg: ServiceConfig) -> Any:
    entry = drivers.get(name)
    if entry is None:
        logger.warning(f"Unknown {kind} driver '{name}', using {DEFAULT_DRIVER}")
        entry = drivers[DEFAULT_DRIVER]
    elif not entry[1](cfg):
        logger.warning(f"{kind} driver '{name}' is not configured, using {DEFAULT_DRIVER}")
        entry = drivers[DEFAULT_DRIVER]
    return entry[0](cfg)


class ProviderSet:
    """The engines one worker tick dispatches stage work to."""

    def __init__(
        self,
        script: ScriptEngine,
        voice: VoiceEngine,
        video: VideoEngine,
        assembly: AssemblyEngine,
        image: ImageEngine,
        research: ResearchEngine,
    ) -> None:
        self.script = script
        self.voice = voice
        self.video = video
        self.assembly = assembly
        self.image = image
        self.research = research

    @classmethod
    def mock(cls) -> "ProviderSet":
        return cls(
            script=MockScriptEngine(),
            voice=MockVoiceEngine(),
            video=MockVideoEngine(),
            assembly=MockAssemblyEngine(),
            image=MockImageEngine(),
            research=MockResearchEngine(),
        )

    def describe(self) -> dict[str, str]:
        return {
            "script": self.script.name,
            "voice": self.voice.name,
            "video": self.video.name,
            "assembly": self.assembly.name,
            "image": self.image.name,
            "research": self.research.name,
        }


def build_providers(cfg: ServiceConfig | None = None) -> ProviderSet:
    """Build the configured provider set, falling back to mocks for unconfigured drivers."""
    cfg = cfg or config
    return ProviderSet(
        script=_select("script", SCRIPT_DRIVERS, cfg.get("script_service", DEFAULT_DRIVER), cfg),
        voice=_select("voice", VOICE_DRIVERS, cfg.get("voice_service", DEFAULT_DRIVER), cfg),
        video=_select("video", VIDEO_DRIVERS, cfg.get("video_service", DEFAULT_DRIVER), cfg),
        assembly=_select("assembly", ASSEMBLY_DRIVERS, cfg.get("assembly_service", DEFAULT_DRIVER), cfg),
        image=_select("image", IMAGE_DRIVERS, cfg.get("image_service", DEFAULT_DRIVER), cfg),
        research=_select("research", RESEARCH_DRIVERS, cfg.get("research_service", DEFAULT_DRIVER), cfg),
    )


def research_enabled(cfg: ServiceConfig | None = None) -> bool:
    cfg = cfg or config
    return bool(cfg.get("research_enabled", False))
