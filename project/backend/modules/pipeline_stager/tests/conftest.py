"""Test fixtures for pipeline stager module."""

import pytest

from shared.cancellation import CancelSignal
from shared.models.job import Group, Job, JobKind
from modules.state_store.store import StateStore
from modules.task_pool.concurrency import fixed_concurrency_policy
from modules.pipeline_stager.context import JobContext
from modules.pipeline_stager.stager import expand_job


class FakeBackend:
    """Records every remote call and answers from a per-call rule."""

    def __init__(self, rule=None):
        self.calls = []
        self.rule = rule

    async def __call__(self, backend, payload):
        self.calls.append((backend, payload))
        if self.rule is not None:
            outcome = self.rule(backend, payload)
            if isinstance(outcome, Exception):
                raise outcome
            if outcome is not None:
                return outcome
        return f"{backend}:{len(self.calls)}.png"

    @property
    def instructions(self):
        return [payload.instruction for _, payload in self.calls]


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def variation_job():
    """Original + two colour groups x three poses."""
    return Job(
        kind=JobKind.VARIATION,
        base_artifact="https://example.com/base.png",
        groups=[
            Group(id="navy", label="Navy", hex_color="#1F3A5F"),
            Group(id="olive", label="Olive", reference_artifact="https://example.com/olive.png"),
        ],
        poses=["FRONT", "LEFT_15", "RIGHT_15"],
    )


@pytest.fixture
def make_context():
    """Factory building a JobContext with test-friendly retry settings."""
    def _make(job, call_fn, **overrides):
        store = StateStore(expand_job(job), job_id=job.id)
        kwargs = {
            "job": job,
            "store": store,
            "call_fn": call_fn,
            "cancel_signal": CancelSignal(),
            "primary_backend": "acme/quality",
            "secondary_backend": "acme/fast",
            "concurrency_policy": fixed_concurrency_policy(2),
            "max_retries": 1,
            "initial_delay": 0.001,
            "timeout_seconds": 5.0,
        }
        kwargs.update(overrides)
        return JobContext(**kwargs)

    return _make


@pytest.fixture
def backend_factory():
    """Build a FakeBackend with a custom (backend, payload) -> outcome rule."""
    return FakeBackend
