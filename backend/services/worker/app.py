"""Worker service API endpoints: tick, stuck-job sweep and scheduling trigger."""

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from database import get_db
from services.auth import verify_cron_secret
from services.providers.registry import ProviderSet, build_providers
from services.worker.executor import WorkerLoop
from services.worker.recovery import reset_stuck_jobs
from services.worker.scheduler import CronRunner
from shared.errors import FeedrError
from shared.models import (
    APIResponse,
    CronRunResponse,
    ResetStuckRequest,
    ResetStuckResponse,
    TickResult,
    WorkerRunRequest,
)
from shared.utils import config, setup_logging

logger = setup_logging("worker-service")

app = FastAPI(
    title="Worker Service",
    description="Advances queued generation jobs one tick at a time",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get("allowed_origins", ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize providers and the cron runner
providers = build_providers()
cron_runner = CronRunner(providers)
logger.info(f"Worker providers: {providers.describe()}")


def get_providers() -> ProviderSet:
    return providers


def get_cron_runner() -> CronRunner:
    return cron_runner


@app.get("/health")
async def health_check():
    """Health check endpoint for the worker service."""
    return APIResponse(message="Worker Service is healthy", data={"providers": providers.describe()})


@app.post("/run", response_model=TickResult)
async def run_worker(
    request: WorkerRunRequest,
    db: Session = Depends(get_db),
    provider_set: ProviderSet = Depends(get_providers),
) -> TickResult:
    """Run a single tick: claim and process at most one job."""
    if request.action != "run-once":
        raise HTTPException(status_code=400, detail=f"Unknown action: {request.action}")
    try:
        return await WorkerLoop(db, provider_set).run_once()
    except FeedrError as e:
        logger.error(f"Worker tick failed: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.to_dict()) from e


@app.post("/reset-stuck", response_model=ResetStuckResponse)
async def reset_stuck(request: ResetStuckRequest, db: Session = Depends(get_db)) -> ResetStuckResponse:
    """Requeue running jobs whose claim is older than the threshold."""
    threshold = request.threshold_minutes or config.stuck_threshold_minutes
    try:
        reset_count = reset_stuck_jobs(db, threshold)
        return ResetStuckResponse(reset_count=reset_count, threshold_minutes=threshold)
    except Exception as e:
        logger.error(f"Failed to reset stuck jobs: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to reset stuck jobs: {e!s}") from e


@app.post("/cron", response_model=CronRunResponse)
async def run_cron(
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
    runner: CronRunner = Depends(get_cron_runner),
) -> CronRunResponse:
    """Drain the queue within the configured job and runtime budget."""
    verify_cron_secret(authorization)
    try:
        return await runner.run(db)
    except FeedrError as e:
        logger.error(f"Cron run failed: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.to_dict()) from e
