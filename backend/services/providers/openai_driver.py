"""OpenAI-backed drivers for scripts, voice-over and images using AsyncOpenAI."""

import json
import os
import uuid
from typing import Any, ClassVar

from openai import APIError, AsyncOpenAI

from services.providers.base import ImageEngine, ScriptEngine, VoiceEngine
from shared.errors import ProviderError

SCRIPT_SYSTEM_PROMPT = (
    "You write short-form vertical video scripts. Follow the method configuration exactly: "
    "hook formula, pacing, structure and tone. Respond with a JSON object with the keys "
    '"script_spoken" (the voice-over, under 80 words), "on_screen_text" (a list of '
    '{"t": seconds, "text": caption} objects) and "video_prompt" (a visual description for a '
    "text-to-video model, no on-screen text)."
)


class OpenAIScriptEngine(ScriptEngine):
    """Script writer using chat completions in JSON mode."""

    name = "openai"

    def __init__(self, api_key: str, model: str = "gpt-4o-mini") -> None:
        self.client = AsyncOpenAI(api_key=api_key)
        self.model = model

    async def generate_script(
        self,
        brief: dict[str, Any],
        research: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        user_content = json.dumps({"brief": brief, "research": research or {}})
        try:
            response = await self.client.chat.completions.create(
                model=kwargs.get("model", self.model),
                messages=[
                    {"role": "system", "content": SCRIPT_SYSTEM_PROMPT},
                    {"role": "user", "content": user_content},
                ],
                response_format={"type": "json_object"},
                temperature=kwargs.get("temperature", 0.9),
            )
        except APIError as e:
            raise ProviderError(f"Script generation failed: {e}") from e

        content = response.choices[0].message.content or ""
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ProviderError(f"Script generation returned malformed JSON: {e}") from e

        if not data.get("script_spoken") or not data.get("video_prompt"):
            raise ProviderError("Script generation failed: missing required fields")
        return {
            "script_spoken": data["script_spoken"],
            "on_screen_text": data.get("on_screen_text") or [],
            "video_prompt": data["video_prompt"],
        }


class OpenAIVoiceEngine(VoiceEngine):
    """OpenAI text-to-speech writing audio under MEDIA_ROOT."""

    name = "openai"
    SUPPORTED_VOICES: ClassVar[list[str]] = ["alloy", "echo", "fable", "onyx", "nova", "shimmer"]

    def __init__(self, api_key: str, media_root: str, model: str = "tts-1") -> None:
        self.client = AsyncOpenAI(api_key=api_key)
        self.media_root = media_root
        self.model = model

    async def synthesize(self, text: str, voice: str | None = None, **kwargs: Any) -> dict[str, Any]:
        if voice not in self.SUPPORTED_VOICES:
            voice = "alloy"

        try:
            response = await self.client.audio.speech.create(
                model=self.model,
                voice=voice,
                input=text,
                response_format="mp3",
            )
        except APIError as e:
            raise ProviderError(f"Voice synthesis failed: {e}") from e

        os.makedirs(self.media_root, exist_ok=True)
        filename = f"voice_{uuid.uuid4().hex}.mp3"
        file_path = os.path.join(self.media_root, filename)
        with open(file_path, "wb") as f:
            async for chunk in response.iter_bytes():
                f.write(chunk)

        return {
            "audio_url": f"/media/{filename}",
            "file_path": file_path,
            "voice_used": voice,
            "duration": round(len(text) / 15, 2),
        }


class OpenAIImageEngine(ImageEngine):
    """DALL-E image generation."""

    name = "openai"

    SIZES: ClassVar[dict[str, str]] = {
        "1:1": "1024x1024",
        "9:16": "1024x1792",
        "4:5": "1024x1792",
        "16:9": "1792x1024",
    }

    def __init__(self, api_key: str, model: str = "dall-e-3") -> None:
        self.client = AsyncOpenAI(api_key=api_key)
        self.model = model

    async def generate(self, prompt: str, aspect_ratio: str = "1:1", **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self.client.images.generate(
                model=self.model,
                prompt=prompt,
                size=self.SIZES.get(aspect_ratio, "1024x1024"),
                quality=kwargs.get("quality", "standard"),
                n=1,
            )
        except APIError as e:
            raise ProviderError(f"Image generation failed: {e}") from e

        image_url = response.data[0].url if response.data else None
        if not image_url:
            raise ProviderError("Image generation failed: no image returned", provider_may_have_charged=True)
        return {"image_url": image_url, "revised_prompt": response.data[0].revised_prompt}
