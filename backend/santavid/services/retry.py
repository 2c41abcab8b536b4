"""Shared retry policy for provider calls.

Transient faults (HTTP 429/5xx, connection and timeout errors) are retried
with exponential backoff plus jitter; everything else propagates at once.
"""

import logging

import httpx
from google.genai.errors import ClientError, ServerError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from santavid.config import settings

logger = logging.getLogger(__name__)


def is_retriable(exc: BaseException) -> bool:
    """Return True only for transient errors worth retrying (429, 5xx, network)."""
    if isinstance(exc, ServerError):
        return True
    if isinstance(exc, ClientError):
        return getattr(exc, "code", 0) == 429
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError)):
        return True
    return False


def provider_retry(max_attempts: int | None = None):
    """Build a tenacity retry decorator from settings.pipeline."""
    base = settings.pipeline.retry_base_delay
    return retry(
        stop=stop_after_attempt(max_attempts or settings.pipeline.retry_max_attempts),
        wait=wait_exponential(multiplier=base, min=base, max=60) + wait_random(0, 2),
        retry=retry_if_exception(is_retriable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
