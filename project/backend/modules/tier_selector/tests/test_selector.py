"""
Tests for the tiered backend selector.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, Mock

from shared.cancellation import CancelSignal
from shared.errors import (
    BackendUnavailableError,
    GenerationError,
    GenerationTimeoutError,
    JobCancelledError,
    OverloadedError,
    RateLimitError,
)
from modules.tier_selector.selector import (
    STATUS_PRIMARY,
    STATUS_SWITCH,
    STATUS_UNAVAILABLE,
    TieredBackendSelector,
    emit_status,
)

PRIMARY = "acme/quality"
SECONDARY = "acme/fast"


def make_selector(**kwargs):
    kwargs.setdefault("max_retries", 2)
    kwargs.setdefault("initial_delay", 0.001)
    kwargs.setdefault("multiplier", 2.0)
    kwargs.setdefault("timeout_seconds", 5.0)
    return TieredBackendSelector(**kwargs)


def backend_script(script):
    """call_fn whose behaviour per backend is a list of outcomes consumed in order."""
    calls = []

    async def call_fn(backend, payload):
        calls.append(backend)
        outcomes = script[backend]
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return call_fn, calls


@pytest.mark.asyncio
async def test_primary_success():
    """Test that a healthy primary is used without fallback."""
    call_fn, calls = backend_script({PRIMARY: ["hq.png"], SECONDARY: ["fast.png"]})
    on_status = Mock()

    result = await make_selector().generate(PRIMARY, SECONDARY, {"p": 1}, call_fn, on_status)

    assert result == "hq.png"
    assert calls == [PRIMARY]
    on_status.assert_called_once_with(STATUS_PRIMARY)


@pytest.mark.asyncio
async def test_primary_recovers_after_retry():
    call_fn, calls = backend_script({PRIMARY: [OverloadedError("503"), "hq.png"], SECONDARY: ["fast.png"]})
    on_status = Mock()

    result = await make_selector().generate(PRIMARY, SECONDARY, {}, call_fn, on_status)

    assert result == "hq.png"
    assert calls == [PRIMARY, PRIMARY]
    messages = [c.args[0] for c in on_status.call_args_list]
    assert any("attempt 2/3" in m for m in messages)


@pytest.mark.asyncio
async def test_falls_back_to_secondary_on_overload():
    """Primary overloaded throughout, secondary succeeds: secondary artifact plus a switch status."""
    call_fn, calls = backend_script({PRIMARY: [OverloadedError("503 overloaded")], SECONDARY: ["fast.png"]})
    on_status = Mock()

    result = await make_selector().generate(PRIMARY, SECONDARY, {}, call_fn, on_status)

    assert result == "fast.png"
    assert calls == [PRIMARY, PRIMARY, PRIMARY, SECONDARY]
    messages = [c.args[0] for c in on_status.call_args_list]
    assert messages[0] == STATUS_PRIMARY
    assert messages[-1] == STATUS_SWITCH


@pytest.mark.asyncio
async def test_rate_limit_also_escalates():
    call_fn, calls = backend_script({PRIMARY: [RateLimitError("429")], SECONDARY: ["fast.png"]})

    result = await make_selector(max_retries=0).generate(PRIMARY, SECONDARY, {}, call_fn)

    assert result == "fast.png"
    assert calls == [PRIMARY, SECONDARY]


@pytest.mark.asyncio
async def test_fatal_primary_error_does_not_fall_back():
    """A non-overload error propagates without trying the secondary."""
    call_fn, calls = backend_script({PRIMARY: [GenerationError("invalid input")], SECONDARY: ["fast.png"]})

    with pytest.raises(GenerationError, match="invalid input"):
        await make_selector().generate(PRIMARY, SECONDARY, {}, call_fn)

    assert calls == [PRIMARY]


@pytest.mark.asyncio
async def test_fatal_secondary_error_propagates():
    call_fn, _ = backend_script({
        PRIMARY: [OverloadedError("503")],
        SECONDARY: [GenerationError("Output flagged by safety filter")],
    })

    with pytest.raises(GenerationError, match="safety"):
        await make_selector(max_retries=0).generate(PRIMARY, SECONDARY, {}, call_fn)


@pytest.mark.asyncio
async def test_both_tiers_exhausted():
    """Both tiers overloaded raises SERVER_BUSY after max_retries+1 attempts each."""
    call_fn, calls = backend_script({PRIMARY: [OverloadedError("503")], SECONDARY: [OverloadedError("503")]})
    on_status = Mock()

    with pytest.raises(BackendUnavailableError, match="SERVER_BUSY"):
        await make_selector(max_retries=1).generate(PRIMARY, SECONDARY, {}, call_fn, on_status)

    assert calls == [PRIMARY, PRIMARY, SECONDARY, SECONDARY]
    assert on_status.call_args_list[-1].args[0] == STATUS_UNAVAILABLE


@pytest.mark.asyncio
async def test_timeout_counts_as_transient():
    """A call exceeding the ceiling is retried and then escalated."""
    async def call_fn(backend, payload):
        if backend == PRIMARY:
            await asyncio.sleep(1.0)
        return f"{backend}.png"

    selector = make_selector(max_retries=0, timeout_seconds=0.01)
    result = await selector.generate(PRIMARY, SECONDARY, {}, call_fn)

    assert result == f"{SECONDARY}.png"


@pytest.mark.asyncio
async def test_timeout_error_type():
    async def call_fn(backend, payload):
        await asyncio.sleep(1.0)

    selector = make_selector(max_retries=0, timeout_seconds=0.01)
    with pytest.raises(BackendUnavailableError) as exc_info:
        await selector.generate(PRIMARY, SECONDARY, {}, call_fn)
    assert isinstance(exc_info.value.__cause__, GenerationTimeoutError)


@pytest.mark.asyncio
async def test_cancel_propagates_without_fallback():
    """Cancellation during the primary backoff never reaches the secondary."""
    signal = CancelSignal()
    call_fn = AsyncMock(side_effect=OverloadedError("503"))

    async def cancel_soon():
        await asyncio.sleep(0.02)
        signal.cancel()

    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(JobCancelledError):
        await make_selector(initial_delay=10.0, cancel_signal=signal).generate(PRIMARY, SECONDARY, {}, call_fn)
    await canceller

    assert all(c.args[0] == PRIMARY for c in call_fn.call_args_list)


def test_emit_status_swallows_callback_errors():
    """A broken status callback never breaks generation."""
    emit_status(Mock(side_effect=RuntimeError("closed")), "hello")
    emit_status(None, "hello")
