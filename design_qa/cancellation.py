"""Cooperative cancellation for import and generation runs.

A single CancelToken is created by the caller and threaded through every
await point (fetches, backoff waits, cooldowns). Cancelling it makes the
pending await raise OperationCancelled, which every retry/fallback path
re-raises instead of absorbing.

Usage:
    token = CancelToken()
    task = asyncio.create_task(import_page(..., cancel_token=token))
    token.cancel()          # task fails with OperationCancelled
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")


class OperationCancelled(Exception):
    """Raised when the caller cancels an in-progress operation."""

    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message)


class CancelToken:
    """Caller-owned cancellation signal shared by one operation."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        Whichever side loses the race is cancelled, so an in-flight request
        or pending timer never outlives the call.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter}, return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            work.cancel()
            waiter.cancel()
            raise

        if work in done:
            waiter.cancel()
            return work.result()

        work.cancel()
        # Cancellation wins over whatever the abandoned work was doing
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await work
        raise OperationCancelled()


async def delay(seconds: float, token: Optional[CancelToken] = None) -> None:
    """Sleep for ``seconds``; raise OperationCancelled as soon as ``token`` fires."""
    seconds = max(0.0, seconds)
    if token is None:
        await asyncio.sleep(seconds)
        return
    await token.guard(asyncio.sleep(seconds))
