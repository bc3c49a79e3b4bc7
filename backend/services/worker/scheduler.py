"""
Scheduling trigger.

A cron invocation drains the queue in ticks until it runs out of work,
reaches the per-run job cap, or exceeds its runtime budget. A tick is
never interrupted; the budget is only checked between ticks. Every
sweep_every_runs runs, the stuck-job sweep runs first.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable

from sqlalchemy.orm import Session

from services.providers.registry import ProviderSet
from services.websocket_progress import WebSocketProgressManager
from services.worker.executor import WorkerLoop
from services.worker.recovery import reset_stuck_jobs
from shared.config import ServiceConfig
from shared.models import CronRunResponse, TickResult
from shared.utils import config, setup_logging

logger = setup_logging("worker-cron")

PAUSE_BETWEEN_JOBS_SECONDS = 0.1


class CronRunner:
    """Budgeted batch of worker ticks. Keeps a run counter for the periodic sweep."""

    def __init__(
        self,
        providers: ProviderSet,
        cfg: ServiceConfig | None = None,
        progress: WebSocketProgressManager | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.cfg = cfg or config
        self.providers = providers
        self.progress = progress
        self.max_jobs = self.cfg.max_jobs_per_run
        self.max_runtime = self.cfg.max_runtime_seconds
        self.sweep_every = self.cfg.sweep_every_runs
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic
        self.runs = 0

    def _sweep_due(self) -> bool:
        return self.sweep_every > 0 and (self.runs - 1) % self.sweep_every == 0

    async def run(self, db: Session) -> CronRunResponse:
        self.runs += 1
        started = self._clock()

        stuck_reset = None
        if self._sweep_due():
            stuck_reset = reset_stuck_jobs(db, self.cfg.stuck_threshold_minutes)

        loop = WorkerLoop(db, self.providers, progress=self.progress, cfg=self.cfg, sleep=self._sleep)
        results: list[TickResult] = []
        while len(results) < self.max_jobs:
            if self._clock() - started >= self.max_runtime:
                logger.info("Cron runtime budget reached")
                break

            tick = await loop.run_once()
            if not tick.processed:
                break
            results.append(tick)
            await self._sleep(PAUSE_BETWEEN_JOBS_SECONDS)

        elapsed_ms = int((self._clock() - started) * 1000)
        logger.info(f"Cron run {self.runs} processed {len(results)} job(s) in {elapsed_ms}ms")
        return CronRunResponse(
            success=True,
            jobs_processed=len(results),
            elapsed_ms=elapsed_ms,
            results=results,
            stuck_jobs_reset=stuck_reset,
        )
