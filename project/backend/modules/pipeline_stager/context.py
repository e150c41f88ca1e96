"""
Job-scoped context.

Created when a job starts, passed explicitly to every component working on the
job, and released when the job ends. Nothing about a job lives in module state.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

from shared.cancellation import CancelSignal
from shared.config import settings
from shared.logging import get_logger, set_job_id
from shared.models.job import Group, Job
from modules.state_store.store import StateStore
from modules.task_pool.concurrency import (
    Clock,
    ConcurrencyPolicy,
    default_clock,
    hourly_concurrency_policy,
)
from modules.tier_selector.selector import (
    CallFn,
    StatusCallback,
    TieredBackendSelector,
    emit_status,
)
from modules.pipeline_stager.quality_gate import QualityGate, always_pass

logger = get_logger("pipeline_stager.context")


@dataclass
class JobContext:
    """Everything one job run needs, scoped to that run."""

    job: Job
    store: StateStore
    call_fn: CallFn
    cancel_signal: CancelSignal = field(default_factory=CancelSignal)
    primary_backend: str = field(default_factory=lambda: settings.primary_model)
    secondary_backend: str = field(default_factory=lambda: settings.secondary_model)
    quality_gate: QualityGate = always_pass
    concurrency_policy: ConcurrencyPolicy = field(default_factory=hourly_concurrency_policy)
    clock: Clock = default_clock
    on_status: Optional[StatusCallback] = None
    max_retries: Optional[int] = None
    initial_delay: Optional[float] = None
    timeout_seconds: Optional[float] = None
    released: bool = False
    # Per-run group copies carrying resolved Masters
    groups: Dict[str, Group] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        self.groups = {g.id: g.model_copy(update={"master": None}) for g in self.job.groups}
        set_job_id(self.job.id)
        logger.info(
            f"Job context created for job {self.job.id}",
            extra={
                "job_kind": self.job.kind.value,
                "groups": len(self.job.groups),
                "poses": len(self.job.poses),
                "primary_backend": self.primary_backend,
                "secondary_backend": self.secondary_backend
            }
        )

    @property
    def job_id(self) -> str:
        return self.job.id

    def group(self, group_id: str) -> Group:
        """This run's copy of a group."""
        return self.groups[group_id]

    def selector(self) -> TieredBackendSelector:
        """A tier selector bound to this job's signal and retry budget."""
        return TieredBackendSelector(
            max_retries=self.max_retries,
            initial_delay=self.initial_delay,
            timeout_seconds=self.timeout_seconds,
            cancel_signal=self.cancel_signal,
            job_id=self.job.id
        )

    def concurrency_limit(self) -> int:
        """Read the policy once; the value holds for one pool run."""
        limit = self.concurrency_policy(self.clock())
        if limit < 1:
            raise ValueError(f"Concurrency policy returned {limit}; limits must be >= 1")
        return limit

    def emit_status(self, message: str) -> None:
        emit_status(self.on_status, message)

    def release(self) -> None:
        """Tear down the job's isolation record. Safe to call twice."""
        if self.released:
            return
        self.released = True
        logger.info(
            f"Job context released for job {self.job.id}",
            extra={"counts": self.store.counts(), "cancelled": self.cancel_signal.cancelled}
        )
        set_job_id(None)
