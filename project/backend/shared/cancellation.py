"""
Job-wide cancellation signal.

One signal is shared by every component working on a job. Firing it stops new
work from starting and aborts pending backoff sleeps; in-flight remote calls are
left to settle on their own.
"""

import asyncio
from typing import Optional

from shared.errors import JobCancelledError

CANCELLED_MESSAGE = "Job was cancelled."


class CancelSignal:
    """Cancellation flag with a cancellable sleep."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = None) -> None:
        """Fire the signal. Later calls keep the first reason."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self, job_id: Optional[str] = None) -> None:
        if self.cancelled:
            raise JobCancelledError(self.reason or CANCELLED_MESSAGE, job_id=job_id)

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, delay: float, job_id: Optional[str] = None) -> None:
        """
        Sleep for `delay` seconds unless the signal fires first.

        Raises:
            JobCancelledError: If the signal is already set or fires during the sleep
        """
        self.raise_if_cancelled(job_id)
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, delay))
        except asyncio.TimeoutError:
            return
        raise JobCancelledError(self.reason or CANCELLED_MESSAGE, job_id=job_id)


async def cancellable_sleep(
    delay: float,
    cancel_signal: Optional[CancelSignal] = None,
    job_id: Optional[str] = None
) -> None:
    """Sleep that honours an optional cancel signal."""
    if cancel_signal is None:
        await asyncio.sleep(delay)
        return
    await cancel_signal.sleep(delay, job_id=job_id)
