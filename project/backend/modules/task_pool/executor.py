"""
Bounded task pool.

Runs independent tasks under a concurrency cap, admitting the next task as soon
as any in-flight task settles. Status flows through the State Store only.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Sequence, Set

from shared.cancellation import CancelSignal
from shared.errors import JobCancelledError, describe_error
from shared.logging import get_logger
from shared.models.task import Task, TaskStatus
from modules.state_store.store import StateStore

logger = get_logger("task_pool")

# Task -> artifact
Worker = Callable[[Task], Awaitable[Any]]


class TaskPoolExecutor:
    """
    Dispatches tasks into a bounded pool of asyncio tasks.

    Cancellation means "stop starting new work": undispatched tasks stay
    pending, and settlements that land after cancellation are not written back.
    """

    def __init__(
        self,
        store: StateStore,
        cancel_signal: Optional[CancelSignal] = None,
        job_id: Optional[str] = None
    ):
        self.store = store
        self.cancel_signal = cancel_signal
        self.job_id = job_id

    @property
    def cancelled(self) -> bool:
        return self.cancel_signal is not None and self.cancel_signal.cancelled

    async def run(
        self,
        tasks: Sequence[Task],
        concurrency_limit: int,
        worker: Worker
    ) -> None:
        """
        Run `worker` over `tasks` with at most `concurrency_limit` in flight.

        Args:
            tasks: Tasks to dispatch, in best-effort FIFO order
            concurrency_limit: Maximum tasks generating at once
            worker: Coroutine function producing a task's artifact
        """
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be >= 1")

        logger.info(
            f"Starting pool: {len(tasks)} tasks, {concurrency_limit} concurrent",
            extra={"job_id": self.job_id, "task_count": len(tasks), "concurrency": concurrency_limit}
        )

        in_flight: Set[asyncio.Task] = set()
        dispatched = 0
        try:
            for task in tasks:
                if self.cancelled:
                    break

                while len(in_flight) >= concurrency_limit:
                    _, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)

                if self.cancelled:
                    break

                self.store.update(task.id, TaskStatus.GENERATING)
                in_flight.add(asyncio.create_task(self._dispatch(task, worker), name=f"task-{task.id}"))
                dispatched += 1

            if self.cancelled:
                logger.info(
                    f"Pool stopped by cancellation after dispatching {dispatched}/{len(tasks)} tasks",
                    extra={"job_id": self.job_id, "dispatched": dispatched, "task_count": len(tasks)}
                )

            if in_flight:
                await asyncio.wait(in_flight)
        finally:
            # Reached with tasks still running only when run() itself is cancelled
            pending = [t for t in in_flight if not t.done()]
            if pending:
                logger.warning(
                    f"Pool interrupted, cancelling {len(pending)} in-flight tasks",
                    extra={"job_id": self.job_id, "in_flight": len(pending), "dispatched": dispatched}
                )
                for child in pending:
                    child.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        logger.info(
            "Pool drained",
            extra={"job_id": self.job_id, "dispatched": dispatched, "task_count": len(tasks)}
        )

    async def _dispatch(self, task: Task, worker: Worker) -> None:
        try:
            artifact = await worker(task)
        except JobCancelledError:
            logger.info(
                f"Task {task.id} stopped by cancellation",
                extra={"job_id": self.job_id, "task_id": task.id}
            )
            return
        except Exception as e:
            if self.cancelled:
                logger.info(
                    f"Suppressing failure of task {task.id} after cancellation",
                    extra={"job_id": self.job_id, "task_id": task.id, "error": str(e)}
                )
                return
            error_type, message = describe_error(e)
            logger.error(
                f"Task {task.id} failed: {str(e)}",
                extra={"job_id": self.job_id, "task_id": task.id, "error": str(e), "error_type": error_type}
            )
            self.store.update(task.id, TaskStatus.FAILED, error=message, error_type=error_type)
            return

        if self.cancelled:
            logger.info(
                f"Suppressing result of task {task.id} after cancellation",
                extra={"job_id": self.job_id, "task_id": task.id}
            )
            return

        logger.info(
            f"Task {task.id} succeeded",
            extra={"job_id": self.job_id, "task_id": task.id}
        )
        self.store.update(task.id, TaskStatus.SUCCESS, artifact=artifact)
