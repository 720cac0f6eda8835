"""HTTP utilities providing retry/backoff semantics for idempotent calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)


class RetryConfig:
    def __init__(
        self,
        *,
        attempts: int = 3,
        backoff_seconds: float = 1.0,
        retry_statuses: frozenset[int] = frozenset({500, 502, 503, 504}),
    ) -> None:
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.retry_statuses = retry_statuses


async def request_with_retry(
    func: Callable[..., Awaitable[httpx.Response]],
    *args,
    retry_config: RetryConfig | None = None,
    **kwargs,
) -> httpx.Response:
    """Call ``func`` until it returns a non-retryable response.

    Transport errors and server errors listed in ``retry_statuses`` are retried
    with linear backoff. Client errors are returned to the caller untouched so
    it can classify them. Never use this for one-time authorization codes.
    """
    config = retry_config or RetryConfig()
    attempt = 0

    while True:
        attempt += 1
        try:
            response = await func(*args, **kwargs)
        except httpx.TransportError as exc:
            if attempt >= config.attempts:
                raise
            logger.info("Retrying after transport error (%s/%s): %s", attempt, config.attempts, exc)
        else:
            if response.status_code not in config.retry_statuses or attempt >= config.attempts:
                return response
            logger.info(
                "Retrying after HTTP %s (%s/%s)", response.status_code, attempt, config.attempts
            )
        await asyncio.sleep(config.backoff_seconds * attempt)


__all__ = ["RetryConfig", "request_with_retry"]
