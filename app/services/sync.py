"""Keep the local preference store and the cloud document eventually consistent."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping

from ..config import Settings
from ..models import PreferenceSet
from .connectivity import ConnectivityMonitor
from .debounce import Debouncer
from .document_store import DocumentStore
from .offline_queue import TRANSIENT_ERRORS, OfflineQueue, PendingOperation
from .preferences import PreferenceStore

logger = logging.getLogger(__name__)


class SyncError(RuntimeError):
    """A cloud write kept failing while the network was reported online."""


class CloudSyncReconciler:
    """Mirror one user's :class:`PreferenceStore` into the document store.

    * On :meth:`start` the remote document is pulled once and replaces local
      state wholesale; a missing document is created empty.
    * Local changes that differ from the last synced triple schedule a
      debounced full write of the latest state. Pushes never overlap.
    * Remote changes replace local state, except echoes of this instance's
      own writes.
    * Writes that still fail after retrying are queued while offline and
      replayed in order once connectivity returns. Pass a shared ``queue``
      to keep those writes alive after this reconciler is disposed.
    """

    def __init__(
        self,
        settings: Settings,
        store: PreferenceStore,
        documents: DocumentStore,
        connectivity: ConnectivityMonitor,
        *,
        queue: OfflineQueue | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._settings = settings
        self._store = store
        self._documents = documents
        self._connectivity = connectivity
        self._sleep = sleep
        self._retry_limit = settings.sync_retry_limit
        self._retry_base_delay = settings.sync_retry_base_delay

        self._owns_queue = queue is None
        self._queue = queue if queue is not None else OfflineQueue(connectivity)

        self._user_id: str | None = None
        self._last_synced: dict[str, Any] | None = None
        self._writing: list[dict[str, Any]] = []
        self._write_seq = 0
        self._synced_seq = 0
        self._push_lock = asyncio.Lock()
        self._session_unsubscribers: list[Callable[[], None]] = []
        self._debouncer = Debouncer(settings.sync_debounce_seconds, self._push)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def is_online(self) -> bool:
        return self._connectivity.is_online

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    @property
    def push_scheduled(self) -> bool:
        return self._debouncer.pending

    @property
    def last_synced_at(self) -> datetime | None:
        return self._store.snapshot().last_synced_at

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def start(
        self, user_id: str, *, profile: Mapping[str, str] | None = None
    ) -> None:
        """Pull the user's document, then follow local and remote changes."""

        if self._user_id == user_id:
            return
        if self._user_id is not None:
            await self.stop()

        self._user_id = user_id
        logger.info("Starting preference sync for %s", user_id)

        try:
            remote = await self._documents.get_document(user_id)
        except TRANSIENT_ERRORS:
            # No document is created over data that could not be read.
            logger.exception("Error loading preferences for %s", user_id)
        else:
            if remote is None:
                await self.initialize_user(user_id, profile=profile)
            else:
                self._apply_remote(remote)

        self._session_unsubscribers = [
            self._documents.subscribe(user_id, self._on_remote_change),
            self._store.subscribe(self._on_local_change),
        ]

    async def stop(self) -> None:
        """Sign-out teardown: flush, unsubscribe and clear local state.

        The cloud document is left untouched and queued writes stay queued.
        """

        if self._user_id is None:
            return
        await self._debouncer.flush()
        for unsubscribe in self._session_unsubscribers:
            unsubscribe()
        self._session_unsubscribers = []
        logger.info("Stopped preference sync for %s", self._user_id)
        self._user_id = None
        self._last_synced = None
        self._store.clear()

    async def dispose(self) -> None:
        await self.stop()
        await self._debouncer.close()
        if self._owns_queue:
            await self._queue.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def initialize_user(
        self, user_id: str, *, profile: Mapping[str, str] | None = None
    ) -> None:
        """Create an empty document for a first-time user."""

        now = datetime.now(timezone.utc)
        document = PreferenceSet(last_synced_at=now)
        fields = document.synced_fields()
        self._last_synced = fields
        if self._user_id == user_id:
            self._store.replace(favorites=[], watchlist=[], lists=[], last_synced_at=now)

        async def operation() -> None:
            await self._documents.set_document(user_id, document, profile=profile)
            logger.info("Initialised preferences document for %s", user_id)

        await self._run_write("user initialisation", operation)

    async def sync_all(self, preferences: PreferenceSet | None = None) -> None:
        """Write the full favorites/watchlist/lists triple to the cloud."""

        if self._user_id is None:
            raise RuntimeError("No user is signed in")
        async with self._push_lock:
            await self._write_snapshot(
                preferences if preferences is not None else self._store.snapshot()
            )

    async def _write_snapshot(self, source: PreferenceSet) -> None:
        user_id = self._user_id
        if user_id is None:
            raise RuntimeError("No user is signed in")

        now = datetime.now(timezone.utc)
        document = source.model_copy(deep=True, update={"last_synced_at": now})
        fields = document.synced_fields()
        self._write_seq += 1
        seq = self._write_seq

        async def operation() -> None:
            self._writing.append(fields)
            try:
                await self._documents.set_document(user_id, document)
            finally:
                self._writing.remove(fields)
            # A replayed older write must not move the synced marker backwards.
            if self._user_id == user_id and seq > self._synced_seq:
                self._synced_seq = seq
                self._last_synced = fields
                self._store.mark_synced(now)
            logger.debug("Synced preferences for %s", user_id)

        await self._run_write("full sync", operation)

    async def delete_account(self) -> None:
        """Delete the signed-in user's document."""

        user_id = self._user_id
        if user_id is None:
            raise RuntimeError("No user is signed in")

        # A push firing after the delete would recreate the document.
        self._debouncer.cancel()

        async def operation() -> None:
            await self._documents.delete_document(user_id)
            logger.info("Deleted preferences document for %s", user_id)

        await self._run_write("account deletion", operation)
        if self._user_id == user_id:
            self._last_synced = self._store.snapshot().synced_fields()

    async def flush(self) -> None:
        """Push a scheduled change now instead of waiting for the timer."""

        await self._debouncer.flush()

    async def _push(self) -> None:
        async with self._push_lock:
            if self._user_id is None:
                return
            snapshot = self._store.snapshot()
            fields = snapshot.synced_fields()
            if fields == self._last_synced:
                return
            await self._write_snapshot(snapshot)

        # Edits made while the write was in flight still need a push.
        if (
            self._user_id is not None
            and self._last_synced == fields
            and self._store.snapshot().synced_fields() != fields
            and not self._debouncer.pending
        ):
            self._debouncer.schedule()

    async def _run_write(self, label: str, operation: PendingOperation) -> None:
        try:
            await self._with_retry(label, operation)
        except TRANSIENT_ERRORS as exc:
            if not self._connectivity.is_online:
                logger.info("Offline, queuing %s for when online", label)
                self._queue.append(operation)
                return
            logger.error("Error during %s: %s", label, exc)
            raise SyncError(f"{label} failed after retries") from exc

    async def _with_retry(self, label: str, operation: PendingOperation) -> None:
        attempt = 0
        while True:
            try:
                await operation()
                return
            except TRANSIENT_ERRORS:
                if attempt >= self._retry_limit:
                    raise
                delay = self._retry_base_delay * (2 ** attempt)
                attempt += 1
                logger.info(
                    "Retry attempt %s/%s for %s in %.1fs",
                    attempt,
                    self._retry_limit,
                    label,
                    delay,
                )
                await self._sleep(delay)

    # ------------------------------------------------------------------
    # Offline queue
    # ------------------------------------------------------------------

    def clear_pending(self) -> None:
        self._queue.clear()

    async def force_sync_pending(self) -> None:
        if self._connectivity.is_online:
            await self.drain_pending()

    async def drain_pending(self) -> None:
        await self._queue.drain()

    # ------------------------------------------------------------------
    # Change handlers
    # ------------------------------------------------------------------

    def _on_local_change(self, snapshot: PreferenceSet) -> None:
        if self._user_id is None:
            return
        if snapshot.synced_fields() == self._last_synced:
            return
        self._debouncer.schedule()

    def _on_remote_change(self, preferences: PreferenceSet) -> None:
        if self._user_id is None:
            return
        fields = preferences.synced_fields()
        if fields == self._last_synced or fields in self._writing:
            return
        logger.debug("Applying remote preference change for %s", self._user_id)
        self._apply_remote(preferences)

    def _apply_remote(self, preferences: PreferenceSet) -> None:
        self._last_synced = preferences.synced_fields()
        self._store.replace(
            favorites=preferences.favorites,
            watchlist=preferences.watchlist,
            lists=preferences.lists,
            last_synced_at=preferences.last_synced_at,
        )
