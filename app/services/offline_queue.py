"""Cloud writes held back while offline and replayed once connectivity returns."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

from .connectivity import ConnectivityMonitor
from .document_store import DocumentStoreError

logger = logging.getLogger(__name__)

PendingOperation = Callable[[], Awaitable[None]]

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    DocumentStoreError,
    httpx.HTTPError,
    OSError,
    asyncio.TimeoutError,
)


class OfflineQueue:
    """FIFO of pending writes shared by every session on this device.

    Operations outlive the reconciler that queued them, so a write made
    before sign-out still lands once the network is back.
    """

    def __init__(self, connectivity: ConnectivityMonitor):
        self._connectivity = connectivity
        self._pending: list[PendingOperation] = []
        self._drain_task: asyncio.Task[None] | None = None
        self._unsubscribe = connectivity.subscribe(self._on_connectivity_change)

    def __len__(self) -> int:
        return len(self._pending)

    def append(self, operation: PendingOperation) -> None:
        self._pending.append(operation)

    def clear(self) -> None:
        self._pending.clear()

    async def drain(self) -> None:
        """Replay queued writes in order; a failing write does not stop the rest."""

        if not self._pending:
            return
        operations = list(self._pending)
        self._pending.clear()
        logger.info("Processing %s pending operations", len(operations))

        for index, operation in enumerate(operations):
            try:
                await operation()
            except TRANSIENT_ERRORS:
                logger.exception("Error processing pending operation")
                if not self._connectivity.is_online:
                    # Back offline: keep the rest queued ahead of newer writes.
                    self._pending[:0] = operations[index:]
                    break
            except Exception:
                logger.exception("Error processing pending operation")
        logger.info("Pending operations processed, %s still queued", len(self._pending))

    async def close(self) -> None:
        self._unsubscribe()
        if self._drain_task is not None and not self._drain_task.done():
            await self._drain_task

    def _on_connectivity_change(self, online: bool) -> None:
        if not online or not self._pending:
            return
        if self._drain_task is not None and not self._drain_task.done():
            return
        self._drain_task = asyncio.get_running_loop().create_task(self.drain())
