"""
Error taxonomy for the generation orchestrator.

Transient errors are retried (and escalated to the secondary tier), fatal errors
surface immediately, cancellation is never recorded as a task failure.
"""

from enum import Enum
from typing import Any, Optional, Tuple


class PipelineError(Exception):
    """Base error for all orchestrator failures."""

    def __init__(self, message: str, job_id: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.job_id = job_id


class ConfigError(PipelineError):
    """Invalid or missing configuration."""


class ValidationError(PipelineError):
    """Invalid job input."""


class GenerationError(PipelineError):
    """Fatal backend error: invalid input, safety rejection, authentication."""


class RetryableError(PipelineError):
    """Transient backend error eligible for retry."""


class OverloadedError(RetryableError):
    """Backend overloaded (503)."""


class RateLimitError(RetryableError):
    """Backend rate limit or quota exceeded (429)."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        job_id: Optional[Any] = None
    ):
        super().__init__(message, job_id=job_id)
        self.retry_after = retry_after


class GenerationTimeoutError(RetryableError):
    """Remote call exceeded its wall-clock ceiling."""


class BackendUnavailableError(GenerationError):
    """Every backend tier exhausted its retry budget."""


class QualityGateError(PipelineError):
    """A group's Master artifact was rejected by the quality gate."""


class JobCancelledError(PipelineError):
    """The job's cancel signal fired."""


class ErrorClass(str, Enum):
    OVERLOADED = "overloaded"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    FATAL = "fatal"
    CANCELLED = "cancelled"


TRANSIENT_CLASSES = frozenset({ErrorClass.OVERLOADED, ErrorClass.RATE_LIMITED, ErrorClass.TIMEOUT})

_OVERLOADED_MARKERS = ("503", "overloaded", "unavailable", "try again later")
_RATE_LIMIT_MARKERS = ("429", "rate limit", "quota", "resource_exhausted")
_TIMEOUT_MARKERS = ("timeout", "timed out")


def _status_code(exc: BaseException) -> Optional[int]:
    """Pull an HTTP-like status code off an exception, if it carries one."""
    for attr in ("status", "status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None


def classify_error(exc: BaseException) -> ErrorClass:
    """
    Classify an exception raised by a remote call.

    Exception type wins, then a status code attribute, then message substrings.
    Anything unrecognised is fatal.

    Args:
        exc: Exception raised by the operation

    Returns:
        ErrorClass for the exception
    """
    if isinstance(exc, JobCancelledError):
        return ErrorClass.CANCELLED
    if isinstance(exc, OverloadedError):
        return ErrorClass.OVERLOADED
    if isinstance(exc, RateLimitError):
        return ErrorClass.RATE_LIMITED
    if isinstance(exc, (GenerationTimeoutError, TimeoutError)):
        return ErrorClass.TIMEOUT
    if isinstance(exc, RetryableError):
        return ErrorClass.OVERLOADED
    if isinstance(exc, PipelineError):
        return ErrorClass.FATAL

    status = _status_code(exc)
    if status == 503:
        return ErrorClass.OVERLOADED
    if status == 429:
        return ErrorClass.RATE_LIMITED

    message = str(exc).lower()
    if any(marker in message for marker in _OVERLOADED_MARKERS):
        return ErrorClass.OVERLOADED
    if any(marker in message for marker in _RATE_LIMIT_MARKERS):
        return ErrorClass.RATE_LIMITED
    if any(marker in message for marker in _TIMEOUT_MARKERS):
        return ErrorClass.TIMEOUT
    return ErrorClass.FATAL


def is_transient(exc: BaseException) -> bool:
    """True if the exception is worth retrying."""
    return classify_error(exc) in TRANSIENT_CLASSES


def describe_error(exc: BaseException) -> Tuple[str, str]:
    """
    Map an exception to a user-facing (error_type, message) pair.

    Categories: safety, quota, invalid, busy, cancelled, quality, unknown.
    """
    raw = str(exc) or exc.__class__.__name__
    lowered = raw.lower()

    if isinstance(exc, JobCancelledError):
        return "cancelled", "Job was cancelled."
    if isinstance(exc, QualityGateError):
        return "quality", raw
    if "safety" in lowered or "sensitive" in lowered or "blocked" in lowered:
        return "safety", "Blocked by the content safety policy. Adjust the prompt or input image."
    if isinstance(exc, BackendUnavailableError):
        return "busy", "The generation service is very busy. Please try again shortly."

    error_class = classify_error(exc)
    if error_class == ErrorClass.RATE_LIMITED:
        return "quota", "API quota exceeded. Please try again shortly."
    if error_class in (ErrorClass.OVERLOADED, ErrorClass.TIMEOUT):
        return "busy", "The generation service is overloaded. Please try again shortly."
    if "400" in lowered or "invalid" in lowered:
        return "invalid", "Invalid request. Check the inputs and images."
    return "unknown", raw
