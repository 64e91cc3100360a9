"""Cooperative cancellation shared by a run, its sub-agents and its shell commands."""

import asyncio
from typing import Any, AsyncIterator, Awaitable, TypeVar

from .errors import RunCancelled

T = TypeVar("T")


class CancelToken:
    """One-shot cancellation signal checked at every suspension point."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason = ""

    def cancel(self, reason: str = "Run cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelled()

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token fires first.

        Parameters:
            awaitable: Work to race against cancellation. It is cancelled if the token wins.
        """
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when = asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

        if work.done():
            return work.result()

        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        raise RunCancelled()

    async def iterate(self, stream: AsyncIterator[Any]) -> AsyncIterator[Any]:
        """Yield items from an async iterator, checking the token before each item."""
        iterator = stream.__aiter__()
        try:
            while True:
                try:
                    item = await self.guard(iterator.__anext__())
                except StopAsyncIteration:
                    return
                yield item
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
