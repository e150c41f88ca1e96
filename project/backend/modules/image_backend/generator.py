"""
Replicate API integration for image generation.

Implements the orchestrator's call function: one remote call per invocation,
no retries here. Errors are mapped onto the orchestrator's error taxonomy so the
tier selector can decide between retry, fallback and failure.
"""

import asyncio
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

import httpx
import replicate
from replicate.exceptions import ModelError, ReplicateError

from shared.config import settings
from shared.errors import (
    ConfigError,
    GenerationError,
    GenerationTimeoutError,
    OverloadedError,
    RateLimitError,
    RetryableError,
)
from shared.logging import get_logger
from shared.models.generation import GenerationPayload

logger = get_logger("image_backend.generator")

OUTPUT_FORMAT = "png"

AUTH_MARKERS = ("401", "403", "unauthorized", "unauthenticated", "authentication", "forbidden", "api token")
NETWORK_MARKERS = ("connection reset", "connection refused", "connection aborted", "remote end closed")

_client: Optional[replicate.Client] = None


def get_client() -> replicate.Client:
    """
    Return the shared Replicate client, creating it on first use.

    Raises:
        ConfigError: If REPLICATE_API_TOKEN is not configured
    """
    global _client
    if _client is None:
        if not settings.replicate_api_token:
            raise ConfigError("REPLICATE_API_TOKEN is required to call the Replicate backend")
        _client = replicate.Client(api_token=settings.replicate_api_token)
    return _client


def parse_retry_after_header(headers: Any) -> Optional[float]:
    """
    Parse Retry-After header from API response.

    Args:
        headers: Response headers mapping

    Returns:
        Seconds to wait, or None if not present
    """
    if not headers:
        return None
    retry_after = headers.get("Retry-After") or headers.get("retry-after")
    if not retry_after:
        return None

    try:
        # Retry-After can be seconds or an HTTP date
        return float(retry_after)
    except ValueError:
        pass
    try:
        retry_date = parsedate_to_datetime(retry_after)
    except (TypeError, ValueError):
        return None
    if retry_date.tzinfo is None:
        retry_date = retry_date.replace(tzinfo=timezone.utc)
    return max(0.0, (retry_date - datetime.now(timezone.utc)).total_seconds())


def build_input(payload: GenerationPayload) -> Dict[str, Any]:
    """Replicate input dict for an image-edit model."""
    return {
        "prompt": payload.instruction,
        "image_input": list(payload.images),
        "resolution": payload.resolution,
        "aspect_ratio": payload.aspect_ratio,
        "output_format": OUTPUT_FORMAT,
    }


def extract_output_url(output: Any, backend: str) -> str:
    """
    Pull the artifact URL out of a Replicate output.

    Output may be a list or a single FileOutput/URL.
    """
    if isinstance(output, list):
        output_item = output[0] if len(output) > 0 else None
    else:
        output_item = output

    if not output_item:
        raise GenerationError(f"No output returned from {backend}")

    # FileOutput objects have a .url property
    output_url = output_item.url if hasattr(output_item, "url") else output_item
    if not isinstance(output_url, str):
        output_url = str(output_url)
    if not output_url:
        raise GenerationError(f"No output URL returned from {backend}")
    return output_url


def _map_status_error(status: int, message: str, retry_after: Optional[float] = None) -> Exception:
    if status == 429:
        return RateLimitError(message, retry_after=retry_after)
    if status == 503:
        return OverloadedError(message)
    if 400 <= status < 500:
        return GenerationError(message)
    return RetryableError(message)


def map_backend_error(e: Exception, backend: str) -> Exception:
    """
    Translate an exception raised by the Replicate client.

    Returns the orchestrator error to raise in its place.
    """
    error_str = str(e)
    lowered = error_str.lower()

    if isinstance(e, httpx.HTTPStatusError):
        status = e.response.status_code
        retry_after = parse_retry_after_header(e.response.headers) if status == 429 else None
        return _map_status_error(status, f"{backend} returned HTTP {status}: {error_str}", retry_after)

    if isinstance(e, httpx.TimeoutException):
        return GenerationTimeoutError(f"{backend} request timed out: {error_str}")

    if isinstance(e, httpx.RequestError):
        return RetryableError(f"Network error calling {backend}: {error_str}")

    if isinstance(e, ModelError):
        # Prediction ran and failed: safety rejections are final, capacity errors are not
        if any(marker in lowered for marker in ("overloaded", "unavailable", "503", "try again later")):
            return OverloadedError(f"{backend} overloaded: {error_str}")
        if "429" in lowered or "rate limit" in lowered or "quota" in lowered:
            return RateLimitError(f"{backend} rate limited: {error_str}")
        return GenerationError(f"{backend} prediction failed: {error_str}")

    if isinstance(e, ReplicateError) and isinstance(getattr(e, "status", None), int):
        return _map_status_error(e.status, f"{backend} error: {error_str}")

    if any(marker in lowered for marker in AUTH_MARKERS):
        return GenerationError(f"Authentication failed for {backend}: {error_str}")
    if "404" in lowered or "not found" in lowered:
        return GenerationError(f"Model not found: {backend}. Error: {error_str}")
    if "429" in lowered or "rate limit" in lowered:
        return RateLimitError(f"{backend} rate limited: {error_str}")
    if "503" in lowered or "overloaded" in lowered:
        return OverloadedError(f"{backend} overloaded: {error_str}")
    if "timeout" in lowered or "timed out" in lowered:
        return GenerationTimeoutError(f"{backend} timed out: {error_str}")
    if any(marker in lowered for marker in NETWORK_MARKERS):
        return RetryableError(f"Network error calling {backend}: {error_str}")
    if any(keyword in lowered for keyword in ("invalid", "validation", "bad request", "400", "safety", "sensitive")):
        return GenerationError(f"Invalid prompt or settings for {backend}: {error_str}")

    # Only recognised capacity and network failures are transient
    return GenerationError(f"Error calling {backend}: {type(e).__name__}: {error_str}")


async def call_backend(backend: str, payload: GenerationPayload) -> str:
    """
    Run one prediction on a Replicate model.

    Args:
        backend: Replicate model identifier, e.g. "google/nano-banana-pro"
        payload: Images and instruction for the call

    Returns:
        URL of the generated image

    Raises:
        ConfigError: If the Replicate token is missing
        RetryableError: Overload, rate limit, timeout or network errors
        GenerationError: Invalid input, safety rejections, missing model
    """
    client = get_client()
    start_time = time.time()

    logger.info(
        f"Calling {backend}",
        extra={"backend": backend, "images": len(payload.images), "resolution": payload.resolution}
    )

    try:
        output = await asyncio.to_thread(client.run, backend, input=build_input(payload))
    except Exception as e:
        mapped = map_backend_error(e, backend)
        logger.warning(
            f"{backend} call failed: {str(e)}",
            extra={
                "backend": backend,
                "error": str(e),
                "error_type": type(mapped).__name__,
                "generation_time": time.time() - start_time
            }
        )
        raise mapped from e

    output_url = extract_output_url(output, backend)
    logger.info(
        f"{backend} returned an image in {time.time() - start_time:.2f}s",
        extra={"backend": backend, "generation_time": time.time() - start_time}
    )
    return output_url
