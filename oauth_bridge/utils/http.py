"""HTTP utilities providing retry/backoff semantics."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)


class RetryConfig:
    def __init__(self, *, attempts: int = 3, backoff_seconds: float = 0.5) -> None:
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds


async def request_with_retry(
    func: Callable[..., Awaitable[httpx.Response]],
    *args,
    retry_config: RetryConfig | None = None,
    **kwargs,
) -> httpx.Response:
    """Call ``func`` retrying transport failures and 5xx responses.

    4xx responses are returned immediately so callers can inspect OAuth error
    bodies. After the last attempt a 5xx response is returned as-is and a
    transport failure is re-raised.
    """
    config = retry_config or RetryConfig()
    attempt = 0
    last_exception: Exception | None = None
    response: httpx.Response | None = None

    while attempt < config.attempts:
        try:
            response = await func(*args, **kwargs)
            last_exception = None
            if response.status_code < 500:
                return response
            logger.warning("Upstream returned %s (attempt %s)", response.status_code, attempt + 1)
        except httpx.TransportError as exc:
            last_exception = exc
            logger.warning("Upstream request failed (attempt %s): %s", attempt + 1, exc)
        attempt += 1
        if attempt < config.attempts:
            await asyncio.sleep(config.backoff_seconds * attempt)

    if last_exception is not None:
        raise last_exception
    if response is not None:
        return response
    raise RuntimeError("Request failed without raising an exception")


__all__ = ["RetryConfig", "request_with_retry"]
