"""Sora 2 Pro text-to-video through the KIE.AI task API."""

from typing import Any, ClassVar

from services.providers.base import VideoEngine
from shared.errors import ProviderError
from shared.http_client import ProviderHTTPClient


class KieSoraVideoEngine(VideoEngine):
    """Submits render tasks and reports their status; polling cadence belongs to the caller."""

    name = "sora"

    STATUS_MAP: ClassVar[dict[str, str]] = {
        "pending": "pending",
        "queued": "pending",
        "processing": "processing",
        "running": "processing",
        "completed": "completed",
        "succeeded": "completed",
        "success": "completed",
        "failed": "failed",
        "error": "failed",
    }

    def __init__(self, api_key: str, base_url: str = "https://api.kie.ai/v1", timeout: int = 60) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout

    def client(self) -> ProviderHTTPClient:
        return ProviderHTTPClient(self.base_url, self.api_key, timeout=self.timeout)

    async def submit(self, prompt: str, duration_seconds: int = 15, aspect_ratio: str = "9:16", **kwargs: Any) -> str:
        payload = {
            "prompt": prompt,
            "aspect_ratio": "portrait" if aspect_ratio == "9:16" else "landscape",
            "n_frames": "10" if duration_seconds <= 10 else "15",
            "size": "high",
            "remove_watermark": True,
        }
        async with self.client() as client:
            data = await client.post("sora2-pro/text-to-video", data=payload, billable=True)

        task_id = (data.get("data") or {}).get("task_id") or data.get("task_id") or data.get("id")
        if not task_id:
            raise ProviderError("Video submit failed: no task id returned", provider_may_have_charged=True)
        return str(task_id)

    async def poll(self, task_id: str) -> dict[str, Any]:
        try:
            async with self.client() as client:
                data = await client.get(f"tasks/{task_id}")
        except ProviderError as e:
            # Transient status failures keep the task alive
            return {"status": "processing", "error": e.message}

        body = data.get("data") or {}
        raw_status = body.get("status") or data.get("status") or ""
        video_url = (body.get("output") or {}).get("video_url") or body.get("video_url") or data.get("video_url")
        return {
            "status": self.STATUS_MAP.get(str(raw_status).lower(), "processing"),
            "video_url": video_url,
            "progress": body.get("progress") or data.get("progress"),
            "error": body.get("error") or data.get("error"),
        }
