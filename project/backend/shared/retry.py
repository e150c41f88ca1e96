"""
Retry logic with exponential backoff.

Wraps one remote call, retries transient failures with an exponentially growing
delay, and aborts the wait as soon as the job's cancel signal fires.
"""

from typing import Any, Awaitable, Callable, Optional, TypeVar

from shared.cancellation import CancelSignal, cancellable_sleep
from shared.config import settings
from shared.errors import (
    JobCancelledError,
    RateLimitError,
    TRANSIENT_CLASSES,
    classify_error,
)
from shared.logging import get_logger

T = TypeVar("T")
logger = get_logger("retry")

# (attempt, max_retries, delay, error) -> None, called before each retry sleep
RetryCallback = Callable[[int, int, float, Exception], None]


class BackoffController:
    """
    Bounded retry loop around a zero-argument async operation.

    Example:
        controller = BackoffController(name="recolor", multiplier=2.0)
        artifact = await controller.execute(
            lambda: client.generate(payload),
            max_retries=3,
            initial_delay=1.0,
            cancel_signal=signal,
        )
    """

    def __init__(
        self,
        name: str = "operation",
        multiplier: Optional[float] = None,
        on_retry: Optional[RetryCallback] = None,
        job_id: Optional[str] = None
    ):
        self.name = name
        self.multiplier = multiplier if multiplier is not None else settings.backoff_multiplier
        self.on_retry = on_retry
        self.job_id = job_id
        self.attempts = 0

    def compute_delay(self, initial_delay: float, attempt: int, error: Optional[Exception] = None) -> float:
        """
        Delay before retry number `attempt + 1`: initial_delay * multiplier ** attempt.

        A Retry-After hint on a rate limit error takes precedence.
        """
        if isinstance(error, RateLimitError) and error.retry_after:
            return float(error.retry_after)
        return initial_delay * (self.multiplier ** attempt)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
        initial_delay: Optional[float] = None,
        cancel_signal: Optional[CancelSignal] = None
    ) -> T:
        """
        Run `operation`, retrying transient failures.

        Args:
            operation: Zero-argument coroutine function performing one remote call
            max_retries: Retries after the first attempt (default: BACKOFF_MAX_RETRIES)
            initial_delay: Delay before the first retry in seconds (default: BACKOFF_INITIAL_DELAY)
            cancel_signal: Optional job cancel signal

        Returns:
            Result of the first successful attempt

        Raises:
            JobCancelledError: If the signal fires before an attempt or during a wait
            Exception: The fatal error, or the last transient error once retries are exhausted
        """
        if max_retries is None:
            max_retries = settings.backoff_max_retries
        if initial_delay is None:
            initial_delay = settings.backoff_initial_delay

        self.attempts = 0
        for attempt in range(max_retries + 1):
            if cancel_signal is not None:
                cancel_signal.raise_if_cancelled(self.job_id)

            self.attempts += 1
            try:
                return await operation()
            except JobCancelledError:
                raise
            except Exception as e:
                if cancel_signal is not None and cancel_signal.cancelled:
                    raise JobCancelledError(
                        cancel_signal.reason or "Job was cancelled.", job_id=self.job_id
                    ) from e

                error_class = classify_error(e)
                if error_class not in TRANSIENT_CLASSES:
                    logger.error(
                        f"Non-retryable error in {self.name}: {str(e)}",
                        extra={"operation": self.name, "error": str(e), "error_class": error_class.value}
                    )
                    raise

                if attempt >= max_retries:
                    logger.error(
                        f"All {max_retries + 1} attempts failed for {self.name}",
                        extra={"operation": self.name, "error": str(e), "error_class": error_class.value}
                    )
                    raise

                delay = self.compute_delay(initial_delay, attempt, e)
                logger.warning(
                    f"Retry attempt {attempt + 1}/{max_retries} for {self.name} after {delay:.2f}s delay",
                    extra={
                        "operation": self.name,
                        "attempt": attempt + 1,
                        "max_retries": max_retries,
                        "delay": delay,
                        "error": str(e),
                        "error_class": error_class.value
                    }
                )
                if self.on_retry is not None:
                    self.on_retry(attempt + 1, max_retries, delay, e)

                await cancellable_sleep(delay, cancel_signal, job_id=self.job_id)

        # range(max_retries + 1) always returns or raises inside the loop
        raise RuntimeError(f"{self.name} exited the retry loop without a result")


async def execute_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: Optional[int] = None,
    initial_delay: Optional[float] = None,
    cancel_signal: Optional[CancelSignal] = None,
    **controller_kwargs: Any
) -> T:
    """Functional form of BackoffController.execute."""
    controller = BackoffController(**controller_kwargs)
    return await controller.execute(
        operation,
        max_retries=max_retries,
        initial_delay=initial_delay,
        cancel_signal=cancel_signal
    )
