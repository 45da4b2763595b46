"""Registry of signed-in users and their synchronised preference stores."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

from ..config import Settings
from .connectivity import ConnectivityMonitor
from .document_store import DocumentStore
from .offline_queue import OfflineQueue
from .preferences import PreferenceStore
from .sync import CloudSyncReconciler

logger = logging.getLogger(__name__)


class UnknownSessionError(KeyError):
    """Raised when no session is active for the requested user."""


@dataclass(slots=True)
class UserSession:
    user_id: str
    store: PreferenceStore
    reconciler: CloudSyncReconciler


class SessionRegistry:
    """Owns one :class:`UserSession` per signed-in user."""

    def __init__(
        self,
        settings: Settings,
        documents: DocumentStore,
        connectivity: ConnectivityMonitor | None = None,
    ):
        self._settings = settings
        self._documents = documents
        self.connectivity = connectivity or ConnectivityMonitor()
        self.pending = OfflineQueue(self.connectivity)
        self._sessions: dict[str, UserSession] = {}

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._sessions

    def get(self, user_id: str) -> UserSession:
        try:
            return self._sessions[user_id]
        except KeyError as exc:
            raise UnknownSessionError(user_id) from exc

    async def start(
        self, user_id: str, *, profile: Mapping[str, str] | None = None
    ) -> UserSession:
        """Sign ``user_id`` in, pulling their preferences from the cloud."""

        existing = self._sessions.get(user_id)
        if existing is not None:
            return existing

        store = PreferenceStore()
        reconciler = CloudSyncReconciler(
            self._settings,
            store,
            self._documents,
            self.connectivity,
            queue=self.pending,
        )
        try:
            await reconciler.start(user_id, profile=profile)
        except Exception:
            await reconciler.dispose()
            raise
        session = UserSession(user_id=user_id, store=store, reconciler=reconciler)
        self._sessions[user_id] = session
        logger.info("Session started for %s", user_id)
        return session

    async def stop(self, user_id: str) -> None:
        session = self._sessions.pop(user_id, None)
        if session is None:
            raise UnknownSessionError(user_id)
        await session.reconciler.dispose()
        logger.info("Session ended for %s", user_id)

    async def close(self) -> None:
        for user_id in list(self._sessions):
            await self.stop(user_id)
        await self.pending.close()
