"""
Unit tests for the Replicate image backend.

Tests input construction, output extraction and error mapping.
"""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest
from unittest.mock import Mock, patch
from replicate.exceptions import ModelError

from shared.errors import (
    ConfigError,
    GenerationError,
    GenerationTimeoutError,
    OverloadedError,
    RateLimitError,
    RetryableError,
    is_transient,
)
from shared.models.generation import GenerationPayload
from modules.image_backend import generator
from modules.image_backend.generator import (
    build_input,
    call_backend,
    extract_output_url,
    get_client,
    map_backend_error,
    parse_retry_after_header,
)

BACKEND = "google/nano-banana-pro"


@pytest.fixture
def payload():
    return GenerationPayload(
        images=["https://example.com/base.png", "https://example.com/olive.png"],
        instruction="Recolour the main garment.",
        resolution="2K",
        aspect_ratio="3:4",
    )


@pytest.fixture
def mock_client():
    client = Mock()
    with patch("modules.image_backend.generator.get_client", return_value=client):
        yield client


def http_status_error(status, headers=None):
    request = httpx.Request("POST", "https://api.replicate.com/v1/predictions")
    response = httpx.Response(status, headers=headers or {}, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


def model_error(message):
    prediction = Mock()
    prediction.error = message
    return ModelError(prediction)


def test_build_input(payload):
    assert build_input(payload) == {
        "prompt": "Recolour the main garment.",
        "image_input": ["https://example.com/base.png", "https://example.com/olive.png"],
        "resolution": "2K",
        "aspect_ratio": "3:4",
        "output_format": "png",
    }


def test_extract_output_url_variants():
    """Output may be a list, a FileOutput-like object or a plain string."""
    file_output = Mock()
    file_output.url = "https://replicate.delivery/a.png"

    assert extract_output_url([file_output], BACKEND) == "https://replicate.delivery/a.png"
    assert extract_output_url(file_output, BACKEND) == "https://replicate.delivery/a.png"
    assert extract_output_url("https://replicate.delivery/b.png", BACKEND) == "https://replicate.delivery/b.png"


@pytest.mark.parametrize("output", [None, [], ""])
def test_extract_output_url_empty(output):
    with pytest.raises(GenerationError, match="No output"):
        extract_output_url(output, BACKEND)


def test_parse_retry_after_header():
    assert parse_retry_after_header({"Retry-After": "5"}) == 5.0
    assert parse_retry_after_header({"retry-after": "2.5"}) == 2.5
    assert parse_retry_after_header({}) is None
    assert parse_retry_after_header(None) is None
    assert parse_retry_after_header({"Retry-After": "not a date"}) is None


def test_parse_retry_after_http_date():
    future = datetime.now(timezone.utc) + timedelta(seconds=30)
    wait = parse_retry_after_header({"Retry-After": format_datetime(future, usegmt=True)})
    assert 0 < wait <= 30


def test_map_http_status_errors():
    rate_limited = map_backend_error(http_status_error(429, {"Retry-After": "4"}), BACKEND)
    assert isinstance(rate_limited, RateLimitError)
    assert rate_limited.retry_after == 4.0

    assert isinstance(map_backend_error(http_status_error(503), BACKEND), OverloadedError)
    assert isinstance(map_backend_error(http_status_error(400), BACKEND), GenerationError)
    assert isinstance(map_backend_error(http_status_error(502), BACKEND), RetryableError)


def test_map_network_errors():
    request = httpx.Request("POST", "https://api.replicate.com/v1/predictions")
    assert isinstance(map_backend_error(httpx.ReadTimeout("slow", request=request), BACKEND), GenerationTimeoutError)
    assert isinstance(map_backend_error(httpx.ConnectError("refused", request=request), BACKEND), RetryableError)


def test_map_model_errors():
    """Prediction failures are fatal unless they report capacity problems."""
    assert isinstance(map_backend_error(model_error("Model is overloaded, try again later"), BACKEND), OverloadedError)
    assert isinstance(map_backend_error(model_error("429 rate limit reached"), BACKEND), RateLimitError)

    flagged = map_backend_error(model_error("Output flagged as sensitive"), BACKEND)
    assert isinstance(flagged, GenerationError)
    assert not is_transient(flagged)


@pytest.mark.parametrize("message,expected", [
    ("404 model not found", GenerationError),
    ("429 Too Many Requests", RateLimitError),
    ("503 Service Unavailable", OverloadedError),
    ("read timed out", GenerationTimeoutError),
    ("invalid image_input", GenerationError),
    ("connection reset by peer", RetryableError),
    ("Authentication credentials were not provided", GenerationError),
    ("401 Unauthorized", GenerationError),
])
def test_map_generic_errors(message, expected):
    assert isinstance(map_backend_error(Exception(message), BACKEND), expected)


@pytest.mark.parametrize("error", [
    Exception("Authentication credentials were not provided"),
    Exception("403 Forbidden"),
    KeyError("output"),
    RuntimeError("something unexpected happened"),
])
def test_unrecognised_errors_are_fatal(error):
    mapped = map_backend_error(error, BACKEND)

    assert isinstance(mapped, GenerationError)
    assert not isinstance(mapped, RetryableError)
    assert not is_transient(mapped)


def test_unrecognised_error_keeps_exception_type():
    mapped = map_backend_error(KeyError("output"), BACKEND)

    assert "KeyError" in str(mapped)


@pytest.mark.asyncio
async def test_call_backend_success(mock_client, payload):
    mock_client.run.return_value = ["https://replicate.delivery/out.png"]

    result = await call_backend(BACKEND, payload)

    assert result == "https://replicate.delivery/out.png"
    mock_client.run.assert_called_once_with(BACKEND, input=build_input(payload))


@pytest.mark.asyncio
async def test_call_backend_maps_errors(mock_client, payload):
    """Test that client errors are raised as orchestrator errors."""
    mock_client.run.side_effect = http_status_error(503)

    with pytest.raises(OverloadedError) as exc_info:
        await call_backend(BACKEND, payload)
    assert isinstance(exc_info.value.__cause__, httpx.HTTPStatusError)


@pytest.mark.asyncio
async def test_call_backend_safety_rejection(mock_client, payload):
    mock_client.run.side_effect = model_error("Output flagged by safety filter")

    with pytest.raises(GenerationError, match="safety"):
        await call_backend(BACKEND, payload)


def test_get_client_requires_token():
    with patch.object(generator, "_client", None), patch.object(generator, "settings") as mock_settings:
        mock_settings.replicate_api_token = None
        with pytest.raises(ConfigError, match="REPLICATE_API_TOKEN"):
            get_client()


def test_get_client_is_cached():
    with patch.object(generator, "_client", None), \
            patch.object(generator, "settings") as mock_settings, \
            patch("modules.image_backend.generator.replicate.Client") as mock_client_class:
        mock_settings.replicate_api_token = "r8_test123456789012345678901234567890"

        first = get_client()
        second = get_client()

    assert first is second
    mock_client_class.assert_called_once_with(api_token="r8_test123456789012345678901234567890")
