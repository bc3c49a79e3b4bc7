"""
Error taxonomy for the generation engine.

Every error carries an HTTP status code and a retryable flag so the service
apps can translate it without knowing where it was raised.
"""

from typing import Any

from pydantic import BaseModel

from shared.utils import truncate_text

CANCELLED_MESSAGE = "Cancelled by user"


class FeedrError(Exception):
    """Base class for all domain errors."""

    code = "INTERNAL_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code,
            "retryable": self.retryable,
            "details": self.details,
        }


class ValidationError(FeedrError):
    """Bad input. Raised before any side effect."""

    code = "INVALID_INPUT"
    status_code = 400


class PaymentError(FeedrError):
    """Insufficient credits or a ledger failure."""

    code = "PAYMENT_FAILED"
    status_code = 402


class NotFoundError(FeedrError):
    code = "NOT_FOUND"
    status_code = 404


class StorageError(FeedrError):
    """Persistence failure. Partial state may have been compensated."""

    code = "STORAGE_ERROR"
    status_code = 503
    retryable = True


class StuckJobError(FeedrError):
    """A job exceeded the claim threshold and was reset by the recovery sweep."""

    code = "STUCK_JOB"
    retryable = True

    def __init__(self, threshold_minutes: int) -> None:
        super().__init__(f"Reset: job exceeded {threshold_minutes} minute threshold")
        self.threshold_minutes = threshold_minutes


class ProviderError(FeedrError):
    """Raised by provider drivers when the upstream service rejects or fails a call."""

    code = "SERVICE_ERROR"
    status_code = 502

    def __init__(
        self,
        message: str,
        provider_may_have_charged: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.provider_may_have_charged = provider_may_have_charged
        self.retryable = classify_error(message).should_retry


class StageError(FeedrError):
    """A stage handler's domain failure. Terminal on the owning clip only."""

    code = "GENERATION_FAILED"

    def __init__(
        self,
        message: str,
        provider_may_have_charged: bool = False,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.provider_may_have_charged = provider_may_have_charged
        self.retryable = classify_error(message).should_retry if retryable is None else retryable

    @classmethod
    def from_provider(cls, error: ProviderError) -> "StageError":
        return cls(
            error.message,
            provider_may_have_charged=error.provider_may_have_charged,
            retryable=error.retryable,
        )

    @classmethod
    def cancelled(cls) -> "StageError":
        """The batch was cancelled while the stage ran."""
        return cls(CANCELLED_MESSAGE, retryable=False)


class ErrorClassification(BaseModel):
    type: str
    should_retry: bool
    suggested_action: str


class FailureInfo(BaseModel):
    step: str
    user_message: str
    guidance: str


def classify_error(message: str) -> ErrorClassification:
    """Decide whether a raw provider error is worth retrying."""
    lower = message.lower()

    if any(term in lower for term in ("content policy", "safety", "inappropriate", "violat")):
        return ErrorClassification(
            type="non_retryable",
            should_retry=False,
            suggested_action="Content violates policy - modify prompt and try again",
        )
    if any(term in lower for term in ("invalid", "malformed", "missing required")):
        return ErrorClassification(
            type="non_retryable",
            should_retry=False,
            suggested_action="Invalid input - check parameters",
        )
    if any(term in lower for term in ("insufficient", "quota", "limit exceeded", "billing", "credit")):
        return ErrorClassification(
            type="budget",
            should_retry=False,
            suggested_action="Out of credits - add more to continue",
        )
    if any(
        term in lower
        for term in ("timeout", "timed out", "rate limit", "429", "502", "503", "network", "temporarily")
    ):
        return ErrorClassification(
            type="retryable",
            should_retry=True,
            suggested_action="Temporary issue - will retry automatically",
        )
    return ErrorClassification(
        type="unknown",
        should_retry=True,
        suggested_action="Unexpected error - attempting retry",
    )


def classify_failure(raw_error: str | None) -> FailureInfo:
    """Map raw error text onto the short message shown on a failed clip."""
    if not raw_error:
        return FailureInfo(step="unknown", user_message="Something went wrong", guidance="We'll retry automatically")

    lower = raw_error.lower()

    if "video generation timed out" in lower or ("video task" in lower and "never completed" in lower):
        return FailureInfo(
            step="video",
            user_message="Video creation took too long",
            guidance="This sometimes happens with complex scenes. Try simplifying your prompt.",
        )
    if "video" in lower and "failed" in lower:
        return FailureInfo(
            step="video",
            user_message="AI couldn't create this video",
            guidance="Try adjusting your prompt for simpler visuals.",
        )
    if "no video prompt" in lower:
        return FailureInfo(
            step="video",
            user_message="Not enough detail for video generation",
            guidance="Try a more descriptive prompt.",
        )
    if "voice" in lower or "tts" in lower or "audio" in lower:
        return FailureInfo(
            step="voice",
            user_message="Voice generation failed",
            guidance="This is usually temporary. Try again in a moment.",
        )
    if "script" in lower or "compile" in lower:
        return FailureInfo(step="script", user_message="Script generation failed", guidance="Try rewording your prompt.")
    if "assembl" in lower or "merge" in lower or "overlay" in lower:
        return FailureInfo(
            step="assembly",
            user_message="Final assembly failed",
            guidance="This is usually a temporary issue. Try again.",
        )
    if "content policy" in lower or "safety" in lower or "violat" in lower:
        return FailureInfo(
            step="content_policy",
            user_message="Content flagged by safety filter",
            guidance="Modify your prompt to avoid restricted content.",
        )
    if "max retries" in lower:
        return FailureInfo(
            step="retry_exhausted",
            user_message="Failed after repeated attempts",
            guidance="This usually means a temporary service issue. Try again later.",
        )
    if "cancelled by user" in lower:
        return FailureInfo(step="cancelled", user_message="Cancelled by you", guidance="Uncharged work has been refunded.")

    return FailureInfo(
        step="unknown",
        user_message=truncate_text(raw_error, 80),
        guidance="Try again or adjust your prompt.",
    )
