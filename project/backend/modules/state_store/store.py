"""
Task state store.

Single writer of task status. Holds the job's task list and pushes the full
snapshot to every subscriber after each mutation.
"""

from typing import Callable, Dict, List, Optional

from shared.errors import ValidationError
from shared.logging import get_logger
from shared.models.task import QualityMetrics, Task, TaskStatus

logger = get_logger("state_store")

TaskSubscriber = Callable[[List[Task]], None]


class StateStore:
    """
    Bookkeeping for one job's tasks.

    Writes are unconditional except for one rule: a terminal task never moves
    back to pending or generating. A late `generating` write from a superseded
    attempt is dropped; success/failed always overwrite.
    """

    def __init__(self, tasks: List[Task], job_id: Optional[str] = None):
        ids = [t.id for t in tasks]
        if len(set(ids)) != len(ids):
            raise ValidationError("Task IDs must be unique", job_id=job_id)

        self.job_id = job_id
        self._tasks: List[Task] = [t.model_copy() for t in tasks]
        self._index: Dict[str, int] = {t.id: i for i, t in enumerate(self._tasks)}
        self._subscribers: List[TaskSubscriber] = []

    def subscribe(self, callback: TaskSubscriber) -> Callable[[], None]:
        """
        Register a snapshot subscriber.

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    @property
    def tasks(self) -> List[Task]:
        """Snapshot of the current task array."""
        return [t.model_copy() for t in self._tasks]

    def get(self, task_id: str) -> Task:
        return self._tasks[self._position(task_id)].model_copy()

    def tasks_for_group(self, group_id: str) -> List[Task]:
        return [t.model_copy() for t in self._tasks if t.group_id == group_id]

    def update(
        self,
        task_id: str,
        status: TaskStatus,
        artifact: Optional[str] = None,
        error: Optional[str] = None,
        error_type: Optional[str] = None,
        metrics: Optional[QualityMetrics] = None
    ) -> bool:
        """
        Write a task's status and result fields.

        Args:
            task_id: Composite task id
            status: New status
            artifact: Result artifact (success)
            error: Error message (failed)
            error_type: Error category (failed)
            metrics: Optional quality metrics, kept from the previous write if omitted

        Returns:
            True if the write was applied, False if it was a stale non-terminal write
        """
        position = self._position(task_id)
        if not self._apply(position, status, artifact, error, error_type, metrics):
            return False
        self._notify()
        return True

    def fail_group(self, group_id: str, error: str, error_type: Optional[str] = None) -> int:
        """
        Mark every non-terminal task of a group failed with the same message.

        Subscribers are notified once for the whole group.

        Returns:
            Number of tasks marked failed
        """
        changed = 0
        for position, task in enumerate(self._tasks):
            if task.group_id != group_id or task.is_terminal:
                continue
            if self._apply(position, TaskStatus.FAILED, None, error, error_type, None):
                changed += 1

        logger.warning(
            f"Group {group_id} short-circuited: {changed} tasks failed",
            extra={"group_id": group_id, "failed_tasks": changed, "error": error}
        )
        if changed:
            self._notify()
        return changed

    def reset_in_flight(self) -> int:
        """
        Return tasks still `generating` to `pending` after a cancelled run.

        Terminal tasks are never touched.

        Returns:
            Number of tasks reset
        """
        changed = 0
        for position, task in enumerate(self._tasks):
            if task.status == TaskStatus.GENERATING:
                self._apply(position, TaskStatus.PENDING, None, None, None, None)
                changed += 1
        if changed:
            logger.info(
                f"Reset {changed} in-flight tasks to pending",
                extra={"reset_tasks": changed}
            )
            self._notify()
        return changed

    def counts(self) -> Dict[str, int]:
        """Task count per status."""
        result = {status.value: 0 for status in TaskStatus}
        for task in self._tasks:
            result[task.status.value] += 1
        return result

    def progress(self) -> int:
        """Percentage of tasks in a terminal state."""
        if not self._tasks:
            return 100
        done = sum(1 for t in self._tasks if t.is_terminal)
        return round(done * 100 / len(self._tasks))

    @property
    def all_terminal(self) -> bool:
        return all(t.is_terminal for t in self._tasks)

    def _position(self, task_id: str) -> int:
        try:
            return self._index[task_id]
        except KeyError:
            raise KeyError(f"Unknown task id: {task_id}") from None

    def _apply(
        self,
        position: int,
        status: TaskStatus,
        artifact: Optional[str],
        error: Optional[str],
        error_type: Optional[str],
        metrics: Optional[QualityMetrics]
    ) -> bool:
        current = self._tasks[position]
        if current.is_terminal and not status.is_terminal:
            logger.warning(
                f"Ignoring stale {status.value} write for terminal task {current.id}",
                extra={"task_id": current.id, "current_status": current.status.value, "status": status.value}
            )
            return False

        self._tasks[position] = current.model_copy(update={
            "status": status,
            "artifact": artifact,
            "error": error,
            "error_type": error_type,
            "metrics": metrics if metrics is not None else current.metrics,
        })
        return True

    def _notify(self) -> None:
        snapshot = self.tasks
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.warning(
                    f"State subscriber failed: {e}",
                    extra={"error": str(e)}
                )
