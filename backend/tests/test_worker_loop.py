from datetime import datetime, timedelta
from typing import Any

import pytest
from sqlalchemy.orm import Session

from models.database import Batch, Clip, Job
from services.batches.manager import BatchLifecycleManager
from services.billing.ledger import CreditLedger
from services.providers.base import ResearchEngine, ScriptEngine, VideoEngine, VoiceEngine
from services.providers.mock import MockVideoEngine, MockVoiceEngine
from services.providers.registry import ProviderSet
from services.websocket_progress import WebSocketProgressManager
from services.worker.executor import WorkerLoop
from services.worker.queue import JobQueue
from services.worker.recovery import reset_stuck_jobs
from shared.errors import ProviderError
from shared.models import GenerateBatchRequest


class StubWebSocket:
    def __init__(self) -> None:
        self.accepted = False
        self.closed = False
        self.sent_messages = []

    async def accept(self) -> None:
        self.accepted = True

    async def close(self) -> None:
        self.closed = True

    async def send_json(self, message: dict) -> None:
        self.sent_messages.append(message)


class FlakyVideoEngine(VideoEngine):
    """Submit times out twice, after that every render fails on the provider side."""

    name = "flaky"

    def __init__(self) -> None:
        self.submit_calls = 0

    async def submit(self, prompt: str, duration_seconds: int = 15, aspect_ratio: str = "9:16", **kwargs: Any) -> str:
        self.submit_calls += 1
        if self.submit_calls <= 2:
            raise ProviderError("Upstream timeout while submitting")
        return f"task-{self.submit_calls}"

    async def poll(self, task_id: str) -> dict[str, Any]:
        return {"status": "failed", "error": "render error"}


class SlowVideoEngine(VideoEngine):
    """Keeps rendering until told to finish."""

    name = "slow"

    def __init__(self) -> None:
        self.submit_calls = 0
        self.polled: list[str] = []
        self.finished = False

    async def submit(self, prompt: str, duration_seconds: int = 15, aspect_ratio: str = "9:16", **kwargs: Any) -> str:
        self.submit_calls += 1
        return "slow-task"

    async def poll(self, task_id: str) -> dict[str, Any]:
        self.polled.append(task_id)
        if self.finished:
            return {"status": "completed", "video_url": "https://cdn.example.com/slow.mp4"}
        return {"status": "processing"}


class RejectingVoiceEngine(VoiceEngine):
    name = "rejecting"

    async def synthesize(self, text: str, voice: str | None = None, **kwargs: Any) -> dict[str, Any]:
        raise ProviderError("Invalid voice id")


class RejectingScriptEngine(ScriptEngine):
    name = "rejecting"

    async def generate_script(self, brief, research=None, **kwargs: Any) -> dict[str, Any]:
        raise ProviderError("Request violates content policy")


class BrokenResearchEngine(ResearchEngine):
    name = "broken"

    async def research(self, intent_text: str, method: str, **kwargs: Any) -> dict[str, Any]:
        raise ProviderError("Invalid research query")


class FakeClock:
    def __init__(self, step: float) -> None:
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


async def no_sleep(seconds: float) -> None:
    return None


async def drain(loop: WorkerLoop, limit: int = 100) -> list:
    results = []
    for _ in range(limit):
        tick = await loop.run_once()
        if not tick.processed:
            return results
        results.append(tick)
    raise AssertionError("queue did not drain")


def create_batch(db: Session, user_id: str | None = None, research: bool = False, **overrides) -> str:
    fields = {"intent_text": "I built my startup and learned from every mistake", "batch_size": 4}
    fields.update(overrides)
    manager = BatchLifecycleManager(db, research_enabled=research)
    return manager.create_batch(GenerateBatchRequest(**fields), user_id).batch_id


def clips_of(db: Session, batch_id: str) -> list[Clip]:
    db.expire_all()
    return db.query(Clip).filter(Clip.batch_id == batch_id).order_by(Clip.variant_id).all()


@pytest.mark.asyncio
async def test_idle_tick_processes_nothing(db_session: Session, providers: ProviderSet) -> None:
    tick = await WorkerLoop(db_session, providers).run_once()
    assert tick.processed is False
    assert tick.job_id is None


@pytest.mark.asyncio
async def test_four_video_batch_runs_to_done(db_session: Session, providers: ProviderSet, funded_user: str) -> None:
    batch_id = create_batch(db_session, funded_user, research=True, quality_mode="balanced")
    batch = db_session.get(Batch, batch_id)
    assert batch.status == "researching"
    assert batch.user_charge_cents == 360
    assert all(clip.status == "planned" for clip in clips_of(db_session, batch_id))

    loop = WorkerLoop(db_session, providers, progress=WebSocketProgressManager())

    first = await loop.run_once()
    assert first.job_type == "research"
    db_session.refresh(batch)
    assert batch.status == "running"
    assert batch.research_json["method"] == "FOUNDERS"
    queued = db_session.query(Job).filter(Job.batch_id == batch_id, Job.status == "queued").all()
    assert [job.type for job in queued] == ["compile"]

    second = await loop.run_once()
    assert second.job_type == "compile"
    queued = db_session.query(Job).filter(Job.batch_id == batch_id, Job.status == "queued").all()
    assert sorted(job.type for job in queued) == ["tts"] * 4
    assert all(clip.status == "vo" and clip.ui_state == "voicing" for clip in clips_of(db_session, batch_id))

    rest = await drain(loop)
    assert len(rest) == 12
    assert all(tick.outcome == "done" for tick in rest)

    db_session.refresh(batch)
    assert batch.status == "done"
    clips = clips_of(db_session, batch_id)
    assert all(clip.status == "ready" and clip.ui_state == "ready" for clip in clips)
    assert all(clip.final_url and clip.voice_url and clip.provider_task_id for clip in clips)
    assert len({clip.script_spoken for clip in clips}) == 4
    assert JobQueue(db_session).counts_by_status(batch_id) == {"queued": 0, "running": 0, "done": 14, "failed": 0}
    assert CreditLedger(db_session).get_balance(funded_user) == 10_000 - 360


@pytest.mark.asyncio
async def test_charged_video_failure_on_third_attempt(db_session: Session, funded_user: str) -> None:
    providers = ProviderSet.mock()
    providers.video = FlakyVideoEngine()
    batch_id = create_batch(db_session, funded_user, batch_size=2)
    loop = WorkerLoop(db_session, providers, max_attempts=3, progress=WebSocketProgressManager())

    results = await drain(loop)

    video_ticks = [tick for tick in results if tick.job_type == "video"]
    assert [tick.outcome for tick in video_ticks] == ["retry", "retry", "failed"] * 2
    assert video_ticks[2].error.startswith("Max retries exceeded")

    video_jobs = db_session.query(Job).filter(Job.batch_id == batch_id, Job.type == "video").all()
    assert all(job.status == "failed" and job.attempts == 3 for job in video_jobs)

    for clip in clips_of(db_session, batch_id):
        assert clip.status == "failed"
        assert clip.ui_state == "failed_charged"
        assert clip.charged_state == "charged"
        assert clip.refunded is False
        assert clip.ui_message == "AI couldn't create this video"

    batch = db_session.get(Batch, batch_id)
    assert batch.status == "failed"
    assert batch.payment_status == "charged"
    assert batch.refunded_cents == 0
    assert CreditLedger(db_session).refunded_total(batch_id) == 0


@pytest.mark.asyncio
async def test_uncharged_failure_refunds_clip_share(db_session: Session, funded_user: str) -> None:
    providers = ProviderSet.mock()
    providers.voice = RejectingVoiceEngine()
    batch_id = create_batch(db_session, funded_user, batch_size=2)
    loop = WorkerLoop(db_session, providers, progress=WebSocketProgressManager())

    results = await drain(loop)

    # Invalid input is not retried
    assert [tick.outcome for tick in results if tick.job_type == "tts"] == ["failed", "failed"]
    for clip in clips_of(db_session, batch_id):
        assert clip.ui_state == "failed_not_charged"
        assert clip.refunded is True
        assert clip.ui_message == "Voice generation failed"

    batch = db_session.get(Batch, batch_id)
    assert batch.status == "failed"
    assert batch.refunded_cents == 180
    assert batch.payment_status == "refunded"
    assert CreditLedger(db_session).get_balance(funded_user) == 10_000


@pytest.mark.asyncio
async def test_compile_failure_fails_every_clip(db_session: Session, funded_user: str) -> None:
    providers = ProviderSet.mock()
    providers.script = RejectingScriptEngine()
    batch_id = create_batch(db_session, funded_user)
    loop = WorkerLoop(db_session, providers, progress=WebSocketProgressManager())

    results = await drain(loop)

    assert [(tick.job_type, tick.outcome) for tick in results] == [("compile", "failed")]
    clips = clips_of(db_session, batch_id)
    assert all(clip.ui_state == "failed_not_charged" for clip in clips)
    assert all(clip.ui_message == "Content flagged by safety filter" for clip in clips)
    batch = db_session.get(Batch, batch_id)
    assert batch.status == "failed"
    assert batch.payment_status == "refunded"
    assert CreditLedger(db_session).get_balance(funded_user) == 10_000


@pytest.mark.asyncio
async def test_research_failure_continues_without_research(db_session: Session) -> None:
    providers = ProviderSet.mock()
    providers.research = BrokenResearchEngine()
    batch_id = create_batch(db_session, research=True, batch_size=2)
    loop = WorkerLoop(db_session, providers, progress=WebSocketProgressManager())

    first = await loop.run_once()
    assert (first.job_type, first.outcome) == ("research", "failed")
    batch = db_session.get(Batch, batch_id)
    db_session.refresh(batch)
    assert batch.status == "running"
    assert batch.research_json is None

    await drain(loop)
    db_session.refresh(batch)
    assert batch.status == "done"


@pytest.mark.asyncio
async def test_stuck_job_is_reset_and_reclaimed(db_session: Session, providers: ProviderSet) -> None:
    batch_id = create_batch(db_session, batch_size=2)

    # A worker claims the compile job at T=0 and dies
    crashed = JobQueue(db_session).claim_next()
    t0 = datetime.utcnow()
    db_session.query(Job).filter(Job.id == crashed.id).update({"locked_at": t0})
    db_session.commit()

    loop = WorkerLoop(db_session, providers, progress=WebSocketProgressManager())
    assert (await loop.run_once()).processed is False

    assert reset_stuck_jobs(db_session, 20, now=t0 + timedelta(minutes=25)) == 1
    job = db_session.get(Job, crashed.id)
    assert job.status == "queued"
    assert job.error == "Reset: job exceeded 20 minute threshold"

    tick = await loop.run_once()
    assert tick.job_id == crashed.id
    assert tick.outcome == "done"
    db_session.refresh(job)
    assert job.attempts == 2
    assert db_session.get(Batch, batch_id).status == "running"


@pytest.mark.asyncio
async def test_job_past_retry_ceiling_is_failed_without_running(db_session: Session, providers: ProviderSet) -> None:
    batch_id = create_batch(db_session, batch_size=2)
    db_session.query(Job).filter(Job.batch_id == batch_id).update({"attempts": 3})
    db_session.commit()

    tick = await WorkerLoop(db_session, providers, max_attempts=3).run_once()

    assert tick.outcome == "failed"
    assert tick.error == "Max retries exceeded"
    clips = clips_of(db_session, batch_id)
    assert all(clip.ui_state == "failed_not_charged" for clip in clips)
    assert all(clip.ui_message == "Failed after repeated attempts" for clip in clips)
    assert all(clip.script_spoken is None for clip in clips)


@pytest.mark.asyncio
async def test_video_resumes_existing_task(db_session: Session) -> None:
    providers = ProviderSet.mock()
    video = SlowVideoEngine()
    video.finished = True
    providers.video = video
    batch_id = create_batch(db_session, batch_size=2)
    loop = WorkerLoop(db_session, providers, progress=WebSocketProgressManager())

    # compile, tts, tts
    for _ in range(3):
        await loop.run_once()
    clip = clips_of(db_session, batch_id)[0]
    clip.provider_task_id = "existing-task"
    clip.charged_state = "charged"
    db_session.commit()

    tick = await loop.run_once()
    assert (tick.job_type, tick.outcome) == ("video", "done")
    assert video.submit_calls == 0
    assert video.polled == ["existing-task"]


@pytest.mark.asyncio
async def test_slow_render_is_flagged_then_resumed(db_session: Session) -> None:
    providers = ProviderSet.mock()
    video = SlowVideoEngine()
    providers.video = video
    batch_id = create_batch(db_session, batch_size=2)
    loop = WorkerLoop(
        db_session,
        providers,
        progress=WebSocketProgressManager(),
        sleep=no_sleep,
        clock=FakeClock(step=100),
    )

    for _ in range(3):
        await loop.run_once()

    timed_out = await loop.run_once()
    assert (timed_out.job_type, timed_out.outcome) == ("video", "retry")
    assert "timed out" in timed_out.error
    clip = clips_of(db_session, batch_id)[0]
    assert clip.ui_state == "rendering_delayed"
    assert clip.provider_task_id == "slow-task"
    assert clip.charged_state == "charged"

    video.finished = True
    resumed = await loop.run_once()
    assert (resumed.job_id, resumed.outcome) == (timed_out.job_id, "done")
    assert video.submit_calls == 1
    clip = clips_of(db_session, batch_id)[0]
    assert clip.status == "assembling"
    assert clip.raw_video_url == "https://cdn.example.com/slow.mp4"


@pytest.mark.asyncio
async def test_result_is_discarded_when_batch_cancelled_mid_stage(
    db_session: Session, second_session: Session
) -> None:
    batch_id = create_batch(db_session, batch_size=2)

    class CancellingVoiceEngine(MockVoiceEngine):
        async def synthesize(self, text: str, voice: str | None = None, **kwargs: Any) -> dict[str, Any]:
            BatchLifecycleManager(second_session, research_enabled=False).cancel_batch(batch_id)
            return await super().synthesize(text, voice)

    providers = ProviderSet.mock()
    providers.voice = CancellingVoiceEngine()
    loop = WorkerLoop(db_session, providers, progress=WebSocketProgressManager())

    assert (await loop.run_once()).job_type == "compile"
    tick = await loop.run_once()
    assert (tick.job_type, tick.outcome) == ("tts", "cancelled")

    clips = clips_of(db_session, batch_id)
    assert all(clip.ui_state == "canceled" for clip in clips)
    assert all(clip.voice_url is None for clip in clips)
    assert (await loop.run_once()).processed is False
    assert db_session.get(Batch, batch_id).status == "cancelled"


@pytest.mark.asyncio
async def test_render_submitted_after_cancel_leaves_clips_canceled(
    db_session: Session, second_session: Session, funded_user: str
) -> None:
    batch_id = create_batch(db_session, user_id=funded_user, batch_size=2)

    class CancellingVideoEngine(MockVideoEngine):
        async def submit(
            self, prompt: str, duration_seconds: int = 15, aspect_ratio: str = "9:16", **kwargs: Any
        ) -> str:
            BatchLifecycleManager(second_session, research_enabled=False).cancel_batch(batch_id)
            return await super().submit(prompt, duration_seconds, aspect_ratio)

    providers = ProviderSet.mock()
    providers.video = CancellingVideoEngine()
    loop = WorkerLoop(db_session, providers, progress=WebSocketProgressManager())

    results = await drain(loop)

    assert [(tick.job_type, tick.outcome) for tick in results] == [
        ("compile", "done"),
        ("tts", "done"),
        ("tts", "done"),
        ("video", "cancelled"),
    ]
    clips = clips_of(db_session, batch_id)
    assert [(clip.status, clip.ui_state, clip.charged_state, clip.refunded) for clip in clips] == [
        ("failed", "canceled", "not_charged", True),
        ("failed", "canceled", "not_charged", True),
    ]
    assert all(clip.provider_task_id is None for clip in clips)
    batch = db_session.get(Batch, batch_id)
    assert batch.status == "cancelled"
    assert batch.payment_status == "refunded"
    assert CreditLedger(db_session).get_balance(funded_user) == 10_000


@pytest.mark.asyncio
async def test_image_batch_runs_to_done(db_session: Session, providers: ProviderSet) -> None:
    batch_id = create_batch(db_session, intent_text="Flash sale on sneakers", output_type="image", batch_size=2)
    loop = WorkerLoop(db_session, providers, progress=WebSocketProgressManager())

    results = await drain(loop)

    assert [tick.job_type for tick in results] == ["image_compile", "image", "image"]
    clips = clips_of(db_session, batch_id)
    assert all(clip.status == "ready" and clip.image_url for clip in clips)
    assert [clip.image_type for clip in clips] == ["bold_vertical", "bold_square"]
    assert [clip.aspect_ratio for clip in clips] == ["9:16", "1:1"]
    assert db_session.get(Batch, batch_id).status == "done"


def test_batch_evaluation_rules(db_session: Session, providers: ProviderSet) -> None:
    batch_id = create_batch(db_session, batch_size=2)
    batch = db_session.get(Batch, batch_id)
    first, second = clips_of(db_session, batch_id)
    loop = WorkerLoop(db_session, providers)

    def evaluate(first_status: str, second_status: str, batch_status: str = "running") -> str:
        first.status, second.status = first_status, second_status
        batch.status = batch_status
        db_session.commit()
        loop.evaluate_batch(batch)
        return batch.status

    assert evaluate("ready", "planned") == "running"
    # Mixed results leave the batch open
    assert evaluate("ready", "failed") == "running"
    assert evaluate("ready", "ready") == "done"
    assert evaluate("failed", "failed") == "failed"
    assert evaluate("ready", "ready", batch_status="cancelled") == "cancelled"


@pytest.mark.asyncio
async def test_progress_events_reach_subscribers(db_session: Session, providers: ProviderSet) -> None:
    batch_id = create_batch(db_session, batch_size=2)
    progress = WebSocketProgressManager()
    websocket = StubWebSocket()
    client_id = await progress.connect(websocket)
    await progress.subscribe(client_id, batch_id)

    await WorkerLoop(db_session, providers, progress=progress).run_once()

    event = websocket.sent_messages[-1]
    assert event["batch_id"] == batch_id
    assert event["job"]["type"] == "compile"
    assert event["job"]["outcome"] == "done"
    assert [clip["ui_state"] for clip in event["clips"]] == ["voicing", "voicing"]
