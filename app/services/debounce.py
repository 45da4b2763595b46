"""Trailing-edge debouncing on the running event loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT")


class Debouncer:
    """Run ``callback`` once after ``delay`` seconds without a new ``schedule``.

    Each ``schedule`` cancels a timer that has not fired yet and starts a new
    one. A callback that is already running is never cancelled by a later
    ``schedule``; the later call gets its own timer.
    """

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]):
        self._delay = delay
        self._callback = callback
        self._timer: asyncio.Task[None] | None = None
        self._running: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def schedule(self) -> None:
        self.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._fire_later())

    def cancel(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def flush(self) -> None:
        """Fire a pending timer immediately and wait for all callbacks."""

        if self.pending:
            self.cancel()
            await self._run()
        await self.join()

    async def join(self) -> None:
        """Wait for callbacks that are currently running."""

        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    async def close(self) -> None:
        self.cancel()
        await self.join()

    async def _fire_later(self) -> None:
        await asyncio.sleep(self._delay)
        current = asyncio.current_task()
        if self._timer is current:
            self._timer = None
        if current is not None:
            self._running.add(current)
        try:
            await self._run()
        finally:
            if current is not None:
                self._running.discard(current)

    async def _run(self) -> None:
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Debounced callback failed")


class DebouncedSearch(Generic[ResultT]):
    """Issue only the latest query once input has been quiet for ``delay``.

    Calls superseded by a newer query return ``None`` without touching the
    network.
    """

    def __init__(self, search: Callable[[str], Awaitable[ResultT]], delay: float):
        self._search = search
        self._delay = delay
        self._generation = 0

    async def submit(self, query: str) -> ResultT | None:
        self._generation += 1
        generation = self._generation
        await asyncio.sleep(self._delay)
        if generation != self._generation:
            logger.debug("Search for %r superseded before firing", query)
            return None
        return await self._search(query)
