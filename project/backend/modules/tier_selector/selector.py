"""
Tiered backend selection.

Tries the primary (high-quality) backend under its own retry budget, then falls
back to the secondary (fast) backend when the primary stays overloaded.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from shared.cancellation import CancelSignal
from shared.config import settings
from shared.errors import (
    BackendUnavailableError,
    GenerationTimeoutError,
    JobCancelledError,
    TRANSIENT_CLASSES,
    classify_error,
)
from shared.logging import get_logger
from shared.retry import BackoffController

logger = get_logger("tier_selector")

# (backend identifier, payload) -> artifact
CallFn = Callable[[str, Any], Awaitable[Any]]
StatusCallback = Callable[[str], None]

STATUS_PRIMARY = "Rendering in high-quality mode..."
STATUS_QUEUED = "Queued behind other requests, attempt {attempt}/{total}..."
STATUS_SWITCH = "High demand on the quality model, switching to fast mode..."
STATUS_UNAVAILABLE = "The service is very busy. Please try again shortly."


def emit_status(on_status: Optional[StatusCallback], message: str) -> None:
    """Fire-and-forget progress message."""
    if on_status is None:
        return
    try:
        on_status(message)
    except Exception as e:
        logger.warning(f"Status callback failed: {e}", extra={"error": str(e)})


class TieredBackendSelector:
    """
    Primary -> secondary fallback waterfall.

    Each tier gets a fresh BackoffController and the same retry budget. Only an
    overload-class final error on the primary escalates; fatal errors propagate
    untouched. Exhausting the secondary raises BackendUnavailableError.
    """

    def __init__(
        self,
        max_retries: Optional[int] = None,
        initial_delay: Optional[float] = None,
        multiplier: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        cancel_signal: Optional[CancelSignal] = None,
        job_id: Optional[str] = None
    ):
        self.max_retries = max_retries if max_retries is not None else settings.tier_max_retries
        self.initial_delay = initial_delay if initial_delay is not None else settings.tier_initial_delay
        self.multiplier = multiplier if multiplier is not None else settings.tier_backoff_multiplier
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.generation_timeout_seconds
        self.cancel_signal = cancel_signal
        self.job_id = job_id

    async def generate(
        self,
        primary_backend: str,
        secondary_backend: str,
        payload: Any,
        call_fn: CallFn,
        on_status: Optional[StatusCallback] = None
    ) -> Any:
        """
        Generate one artifact, falling back to the secondary tier on overload.

        Args:
            primary_backend: High-quality backend identifier
            secondary_backend: Fast fallback backend identifier
            payload: Opaque payload handed to call_fn
            call_fn: Coroutine function performing one remote call
            on_status: Optional progress message callback

        Returns:
            Artifact returned by whichever tier succeeded

        Raises:
            JobCancelledError: If the job is cancelled during a retry wait
            BackendUnavailableError: If both tiers exhaust their retries
            Exception: Any fatal (non-overload) backend error
        """
        emit_status(on_status, STATUS_PRIMARY)
        try:
            return await self._run_tier("primary", primary_backend, payload, call_fn, on_status)
        except JobCancelledError:
            raise
        except Exception as e:
            error_class = classify_error(e)
            if error_class not in TRANSIENT_CLASSES:
                raise
            logger.warning(
                f"Primary backend {primary_backend} overloaded, switching to {secondary_backend}",
                extra={
                    "job_id": self.job_id,
                    "primary_backend": primary_backend,
                    "secondary_backend": secondary_backend,
                    "error": str(e),
                    "error_class": error_class.value
                }
            )

        emit_status(on_status, STATUS_SWITCH)
        try:
            return await self._run_tier("secondary", secondary_backend, payload, call_fn, on_status)
        except JobCancelledError:
            raise
        except Exception as e:
            if classify_error(e) not in TRANSIENT_CLASSES:
                raise
            logger.error(
                "All backend tiers exhausted",
                extra={
                    "job_id": self.job_id,
                    "primary_backend": primary_backend,
                    "secondary_backend": secondary_backend,
                    "error": str(e)
                }
            )
            emit_status(on_status, STATUS_UNAVAILABLE)
            raise BackendUnavailableError("SERVER_BUSY: all backend tiers are overloaded", job_id=self.job_id) from e

    async def _run_tier(
        self,
        tier: str,
        backend: str,
        payload: Any,
        call_fn: CallFn,
        on_status: Optional[StatusCallback]
    ) -> Any:
        total_attempts = self.max_retries + 1

        def on_retry(attempt: int, max_retries: int, delay: float, error: Exception) -> None:
            emit_status(on_status, STATUS_QUEUED.format(attempt=attempt + 1, total=total_attempts))

        async def call_once() -> Any:
            try:
                return await asyncio.wait_for(call_fn(backend, payload), timeout=self.timeout_seconds)
            except asyncio.TimeoutError as e:
                raise GenerationTimeoutError(
                    f"{backend} did not respond within {self.timeout_seconds:.0f}s",
                    job_id=self.job_id
                ) from e

        logger.info(
            f"Calling {tier} backend {backend}",
            extra={"job_id": self.job_id, "tier": tier, "backend": backend, "max_retries": self.max_retries}
        )
        controller = BackoffController(
            name=f"{tier}:{backend}",
            multiplier=self.multiplier,
            on_retry=on_retry,
            job_id=self.job_id
        )
        return await controller.execute(
            call_once,
            max_retries=self.max_retries,
            initial_delay=self.initial_delay,
            cancel_signal=self.cancel_signal
        )
