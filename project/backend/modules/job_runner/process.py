"""
Main entry point for running a generation job.

Wires the State Store, Task Pool Executor, Tiered Backend Selector and
Pipeline Stager together for one job and returns the final task snapshot.
"""

import time
from typing import Optional

from shared.cancellation import CancelSignal
from shared.logging import get_logger
from shared.models.job import Job, JobResult
from modules.state_store.store import StateStore, TaskSubscriber
from modules.task_pool.concurrency import Clock, ConcurrencyPolicy, default_clock, hourly_concurrency_policy
from modules.task_pool.executor import TaskPoolExecutor
from modules.tier_selector.selector import CallFn, StatusCallback
from modules.pipeline_stager.context import JobContext
from modules.pipeline_stager.quality_gate import QualityGate, always_pass
from modules.pipeline_stager.stager import PipelineStager, expand_job

logger = get_logger("job_runner")


async def process(
    job: Job,
    call_fn: CallFn,
    on_update: Optional[TaskSubscriber] = None,
    on_status: Optional[StatusCallback] = None,
    cancel_signal: Optional[CancelSignal] = None,
    quality_gate: Optional[QualityGate] = None,
    concurrency_policy: Optional[ConcurrencyPolicy] = None,
    clock: Optional[Clock] = None,
    primary_backend: Optional[str] = None,
    secondary_backend: Optional[str] = None,
    max_retries: Optional[int] = None,
    initial_delay: Optional[float] = None,
    timeout_seconds: Optional[float] = None
) -> JobResult:
    """
    Run a job to completion or cancellation.

    Args:
        job: Job to run
        call_fn: Coroutine function (backend, payload) -> artifact
        on_update: Receives the full task snapshot after every change
        on_status: Receives human-readable progress messages
        cancel_signal: Job-wide cancel signal (a fresh one if omitted)
        quality_gate: Master acceptance check (default: accept everything)
        concurrency_policy: Time -> concurrency limit (default: hourly policy)
        clock: Time source for the policy (default: local time)
        primary_backend: Override PRIMARY_MODEL
        secondary_backend: Override SECONDARY_MODEL
        max_retries: Override the per-tier retry budget
        initial_delay: Override the per-tier initial backoff delay
        timeout_seconds: Override the per-call timeout

    Returns:
        JobResult with the final task snapshot and the run's resolved
        Masters. Cancelled jobs leave undispatched and in-flight tasks pending.
    """
    start_time = time.monotonic()
    cancel_signal = cancel_signal or CancelSignal()

    store = StateStore(expand_job(job), job_id=job.id)
    unsubscribe = store.subscribe(on_update) if on_update is not None else None
    total = len(store.tasks)
    last_done = 0

    def report_progress(snapshot) -> None:
        nonlocal last_done
        done = sum(1 for t in snapshot if t.is_terminal)
        if done != last_done:
            last_done = done
            context.emit_status(f"Generated {done}/{total}")

    stop_progress = store.subscribe(report_progress)

    context_kwargs = {
        "job": job,
        "store": store,
        "call_fn": call_fn,
        "cancel_signal": cancel_signal,
        "quality_gate": quality_gate or always_pass,
        "concurrency_policy": concurrency_policy or hourly_concurrency_policy(),
        "clock": clock or default_clock,
        "on_status": on_status,
        "max_retries": max_retries,
        "initial_delay": initial_delay,
        "timeout_seconds": timeout_seconds,
    }
    if primary_backend:
        context_kwargs["primary_backend"] = primary_backend
    if secondary_backend:
        context_kwargs["secondary_backend"] = secondary_backend
    context = JobContext(**context_kwargs)

    logger.info(
        f"Starting job {job.id}",
        extra={"job_id": job.id, "job_kind": job.kind.value, "task_count": total}
    )
    context.emit_status(f"Starting {job.kind.value} job: {total} images to generate")

    try:
        executor = TaskPoolExecutor(store, cancel_signal=cancel_signal, job_id=job.id)
        await PipelineStager(context).run_job(job, executor)
    finally:
        if cancel_signal.cancelled:
            store.reset_in_flight()
        stop_progress()
        if unsubscribe is not None:
            unsubscribe()

    counts = store.counts()
    elapsed = time.monotonic() - start_time
    if cancel_signal.cancelled:
        context.emit_status("Job cancelled.")
    else:
        context.emit_status(
            f"Done: {counts['success']} succeeded, {counts['failed']} failed"
        )

    logger.info(
        f"Job {job.id} finished in {elapsed:.1f}s",
        extra={
            "job_id": job.id,
            "elapsed_seconds": round(elapsed, 3),
            "cancelled": cancel_signal.cancelled,
            "success": counts["success"],
            "failed": counts["failed"],
            "pending": counts["pending"]
        }
    )

    return JobResult(
        job_id=job.id,
        tasks=store.tasks,
        counts=counts,
        groups=list(context.groups.values()),
        cancelled=cancel_signal.cancelled,
        elapsed_seconds=elapsed
    )
