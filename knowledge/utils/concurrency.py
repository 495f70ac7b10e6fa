"""Shared concurrency primitives for the retrieval fan-out.

Retrieval runs one embedding/search per query variant concurrently.  Callers
that need a bound across calls (``RagService`` holds one per instance) pass
their own semaphore; otherwise each call gets a fresh one, so no semaphore
outlives the event loop it was first awaited on.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

_T = TypeVar("_T")

DEFAULT_MAX_CONCURRENCY = 8


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    return_exceptions: bool = False,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with semaphore throttling.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Optional semaphore for concurrency control shared with other calls.
        Defaults to a new ``asyncio.Semaphore(max_concurrency)`` for this
        call only.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.
    max_concurrency:
        Limit for the per-call semaphore; ignored when *semaphore* is given.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """
    if semaphore is None:
        semaphore = asyncio.Semaphore(max_concurrency)

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)
