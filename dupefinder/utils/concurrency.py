"""Fan-out helpers."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def gather_isolated(
    coros: Iterable[Awaitable[T]],
    *,
    limit: int = 8,
    label: str = "task",
) -> list[T | BaseException]:
    """Run ``coros`` concurrently, at most ``limit`` at a time.

    A failing item never cancels its siblings: its exception is logged and
    returned in its slot. Cancelling the caller cancels every pending item.
    """
    semaphore = asyncio.Semaphore(max(limit, 1))

    async def guarded(index: int, coro: Awaitable[T]) -> T | BaseException:
        async with semaphore:
            try:
                return await coro
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("%s #%s failed: %s", label, index, exc, exc_info=exc)
                return exc

    return await asyncio.gather(*(guarded(idx, coro) for idx, coro in enumerate(coros)))


async def run_sync(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking call (database, boto3, Pillow) in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
