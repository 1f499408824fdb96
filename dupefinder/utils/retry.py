"""Retry helpers for idempotent collaborator calls."""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from collections.abc import Awaitable, Callable

import httpx
import openai

logger = logging.getLogger(__name__)

RETRY_EXCEPTIONS = (
    OSError,
    asyncio.TimeoutError,
    httpx.TransportError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return isinstance(exc, RETRY_EXCEPTIONS)


def retry_async(
    func: Callable[..., Awaitable] | None = None,
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    retry_on: Callable[[BaseException], bool] = is_retryable,
):
    """Retry ``func`` with exponential backoff.

    Usable as ``retry_async(client.get)(url)`` or as a decorator with or
    without keyword arguments. Only wrap calls that are safe to repeat.
    """

    def decorate(target: Callable[..., Awaitable]):
        @functools.wraps(target)
        async def wrapper(*args, **kwargs):
            delay = base_delay
            for attempt in range(attempts):
                try:
                    return await target(*args, **kwargs)
                except Exception as exc:
                    if attempt == attempts - 1 or not retry_on(exc):
                        raise
                    logger.info(
                        "Retrying %s after %s (attempt %s/%s)",
                        getattr(target, "__qualname__", target),
                        exc.__class__.__name__,
                        attempt + 1,
                        attempts,
                    )
                    await asyncio.sleep(delay + random.random() * delay)
                    delay *= 2

        return wrapper

    if func is not None:
        return decorate(func)
    return decorate
