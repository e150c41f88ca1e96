"""
Tests for the job-scoped context.
"""

from datetime import datetime

import pytest

from shared.logging import get_job_id
from modules.task_pool.concurrency import hourly_concurrency_policy


def test_context_sets_and_clears_job_id(variation_job, fake_backend, make_context):
    """Logs carry the job id while the context is live."""
    context = make_context(variation_job, fake_backend)
    assert get_job_id() == variation_job.id

    context.release()
    assert context.released
    assert get_job_id() is None


def test_release_is_idempotent(variation_job, fake_backend, make_context):
    context = make_context(variation_job, fake_backend)
    context.release()
    context.release()
    assert context.released


def test_concurrency_limit_reads_clock(variation_job, fake_backend, make_context):
    """The policy is evaluated against the injected clock."""
    policy = hourly_concurrency_policy(normal_limit=3, congested_limit=1, congested_start_hour=23, congested_end_hour=9)

    night = make_context(variation_job, fake_backend, concurrency_policy=policy, clock=lambda: datetime(2025, 1, 1, 2, 0))
    day = make_context(variation_job, fake_backend, concurrency_policy=policy, clock=lambda: datetime(2025, 1, 1, 14, 0))

    assert night.concurrency_limit() == 1
    assert day.concurrency_limit() == 3


def test_concurrency_limit_rejects_zero(variation_job, fake_backend, make_context):
    context = make_context(variation_job, fake_backend, concurrency_policy=lambda now: 0)
    with pytest.raises(ValueError):
        context.concurrency_limit()


def test_selector_bound_to_context(variation_job, fake_backend, make_context):
    """The selector shares the job's cancel signal and retry budget."""
    context = make_context(variation_job, fake_backend, max_retries=4)
    selector = context.selector()

    assert selector.cancel_signal is context.cancel_signal
    assert selector.max_retries == 4
    assert selector.job_id == variation_job.id
