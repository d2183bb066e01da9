"""Shared concurrency primitives for bounded fan-out and cancellation.

Two patterns are exposed:

1. **throttled_gather** -- ``asyncio.gather`` with each awaitable wrapped in
   a semaphore acquire/release.  Used by the embedding orchestrator and the
   index manager to keep at most N external calls in flight.

2. **CancellationToken** -- a cooperative cancellation flag.  Callers set it
   to stop an ingestion or retrieval; workers check it before scheduling the
   next batch.  Calls already in flight are left to complete or time out on
   their own; third-party requests are never force-aborted.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from course_rag.utils.errors import IngestionCancelledError

_T = TypeVar("_T")


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently, at most ``semaphore`` slots at a time.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Semaphore bounding concurrency.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


class CancellationToken:
    """Cooperative cancellation signal shared between a caller and workers."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise :class:`IngestionCancelledError` once cancellation is observed."""
        if self._event.is_set():
            raise IngestionCancelledError(message=self._reason or "Ingestion was cancelled")

    async def wait(self) -> None:
        await self._event.wait()


def is_cancelled(token: CancellationToken | None) -> bool:
    return token is not None and token.cancelled
