"""Batch service API endpoints: create, quote, inspect, cancel and review batches."""

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from database import get_db
from services.auth import get_current_user_id, get_optional_user_id
from services.batches.manager import BatchLifecycleManager
from services.billing.ledger import CreditLedger
from shared.errors import FeedrError
from shared.models import (
    APIResponse,
    BatchResponse,
    BatchSnapshot,
    ClipResponse,
    ClipReviewRequest,
    CostEstimateRequest,
    CreditBalanceResponse,
    GenerateBatchRequest,
    GenerateBatchResponse,
)
from shared.utils import config, setup_logging

logger = setup_logging("batch-service")

app = FastAPI(
    title="Batch Service",
    description="Creates generation batches and reports their progress",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.get("allowed_origins", ["*"]),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_batch_manager(db: Session = Depends(get_db)) -> BatchLifecycleManager:
    return BatchLifecycleManager(db)


def to_http_error(error: FeedrError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.to_dict())


@app.get("/health")
async def health_check():
    """Health check endpoint for the batch service."""
    return APIResponse(message="Batch Service is healthy")


@app.post("/generate", response_model=GenerateBatchResponse)
async def generate_batch(
    request: GenerateBatchRequest,
    user_id: str | None = Depends(get_optional_user_id),
    manager: BatchLifecycleManager = Depends(get_batch_manager),
) -> GenerateBatchResponse:
    """Create a batch and seed its first job.

    The batch is charged up front; clips that fail without a provider
    charge are refunded as they fail.
    """
    try:
        return manager.create_batch(request, user_id)
    except FeedrError as e:
        logger.warning(f"Batch creation rejected: {e.message}")
        raise to_http_error(e) from e
    except Exception as e:
        logger.error(f"Failed to create batch: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to create batch: {e!s}") from e


@app.post("/estimate", response_model=dict)
async def estimate_batch(
    request: CostEstimateRequest,
    manager: BatchLifecycleManager = Depends(get_batch_manager),
) -> dict:
    try:
        return manager.estimate(request)
    except FeedrError as e:
        raise to_http_error(e) from e


@app.get("/latest", response_model=BatchSnapshot | None)
async def get_latest_batch(
    user_id: str | None = Depends(get_optional_user_id),
    manager: BatchLifecycleManager = Depends(get_batch_manager),
) -> BatchSnapshot | None:
    """Most recent batch of the caller (anonymous callers see anonymous batches)."""
    try:
        batch = manager.get_latest_batch(user_id)
        if batch is None:
            return None
        return manager.get_batch_snapshot(batch.id, user_id)
    except FeedrError as e:
        raise to_http_error(e) from e
    except Exception as e:
        logger.error(f"Failed to load latest batch: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to load latest batch: {e!s}") from e


@app.get("/credits/balance", response_model=CreditBalanceResponse)
async def get_credit_balance(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> CreditBalanceResponse:
    return CreditBalanceResponse(user_id=user_id, balance_cents=CreditLedger(db).get_balance(user_id))


@app.patch("/clips/{clip_id}/review", response_model=ClipResponse)
async def review_clip(
    clip_id: str,
    request: ClipReviewRequest,
    user_id: str | None = Depends(get_optional_user_id),
    manager: BatchLifecycleManager = Depends(get_batch_manager),
) -> ClipResponse:
    """Mark a clip as winner and/or killed."""
    try:
        clip = manager.update_review(clip_id, request.winner, request.killed, user_id)
        return ClipResponse.model_validate(clip)
    except FeedrError as e:
        raise to_http_error(e) from e
    except Exception as e:
        logger.error(f"Failed to review clip {clip_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to review clip: {e!s}") from e


@app.get("/{batch_id}", response_model=BatchSnapshot)
async def get_batch(
    batch_id: str,
    user_id: str | None = Depends(get_optional_user_id),
    manager: BatchLifecycleManager = Depends(get_batch_manager),
) -> BatchSnapshot:
    """Batch status with its clips and job counts by status."""
    try:
        return manager.get_batch_snapshot(batch_id, user_id)
    except FeedrError as e:
        raise to_http_error(e) from e
    except Exception as e:
        logger.error(f"Failed to get batch {batch_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to get batch: {e!s}") from e


@app.get("/{batch_id}/clips", response_model=list[ClipResponse])
async def list_clips(
    batch_id: str,
    user_id: str | None = Depends(get_optional_user_id),
    manager: BatchLifecycleManager = Depends(get_batch_manager),
) -> list[ClipResponse]:
    try:
        manager.get_batch(batch_id, user_id)
        return [ClipResponse.model_validate(clip) for clip in manager.list_clips(batch_id)]
    except FeedrError as e:
        raise to_http_error(e) from e


@app.post("/{batch_id}/cancel", response_model=BatchResponse)
async def cancel_batch(
    batch_id: str,
    user_id: str | None = Depends(get_optional_user_id),
    manager: BatchLifecycleManager = Depends(get_batch_manager),
) -> BatchResponse:
    """Cancel an active batch. Clips not yet charged by a provider are refunded."""
    try:
        batch = manager.cancel_batch(batch_id, user_id)
        logger.info(f"Cancelled batch {batch_id}")
        return BatchResponse.model_validate(batch)
    except FeedrError as e:
        raise to_http_error(e) from e
    except Exception as e:
        logger.error(f"Failed to cancel batch {batch_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to cancel batch: {e!s}") from e
