"""Per-user preference documents with read, write and change subscriptions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Mapping, Protocol

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import PreferenceDocument
from ..models import PreferenceSet

logger = logging.getLogger(__name__)

DocumentListener = Callable[[PreferenceSet], None]
Unsubscribe = Callable[[], None]


class DocumentStoreError(RuntimeError):
    """A document read or write could not reach the backing store."""


class DocumentStore(Protocol):
    """Contract consumed by the sync reconciler."""

    async def get_document(self, user_id: str) -> PreferenceSet | None: ...

    async def set_document(
        self,
        user_id: str,
        preferences: PreferenceSet,
        *,
        profile: Mapping[str, str] | None = None,
    ) -> None: ...

    async def delete_document(self, user_id: str) -> None: ...

    def subscribe(self, user_id: str, on_change: DocumentListener) -> Unsubscribe: ...


def _to_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _to_aware_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class SQLAlchemyDocumentStore:
    """Document store persisted through SQLAlchemy.

    Subscribers registered in this process are notified after every
    committed write of the user's document, which is how several
    sessions of the same user converge.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._listeners: dict[str, list[DocumentListener]] = {}

    @staticmethod
    def _to_preferences(record: PreferenceDocument) -> PreferenceSet:
        return PreferenceSet.from_document(
            {
                "favorites": record.favorites,
                "watchlist": record.watchlist,
                "lists": record.lists,
                "last_synced_at": _to_aware_utc(record.last_updated),
            }
        )

    async def get_document(self, user_id: str) -> PreferenceSet | None:
        try:
            async with self._session_factory() as session:
                record = await session.get(PreferenceDocument, user_id)
                if record is None:
                    return None
                return self._to_preferences(record)
        except SQLAlchemyError as exc:
            raise DocumentStoreError(f"Failed to read preferences for {user_id}") from exc

    async def set_document(
        self,
        user_id: str,
        preferences: PreferenceSet,
        *,
        profile: Mapping[str, str] | None = None,
    ) -> None:
        """Write the whole document, replacing whatever was stored."""

        data = preferences.synced_fields()
        last_updated = _to_naive_utc(
            preferences.last_synced_at or datetime.now(timezone.utc)
        )
        try:
            async with self._session_factory() as session:
                record = await session.get(PreferenceDocument, user_id)
                if record is None:
                    record = PreferenceDocument(user_id=user_id)
                    session.add(record)
                record.favorites = data["favorites"]
                record.watchlist = data["watchlist"]
                record.lists = data["lists"]
                record.last_updated = last_updated
                if profile:
                    record.email = profile.get("email") or record.email
                    record.display_name = profile.get("display_name") or record.display_name
                await session.commit()
        except SQLAlchemyError as exc:
            raise DocumentStoreError(f"Failed to write preferences for {user_id}") from exc

        self._notify(user_id, preferences)

    async def delete_document(self, user_id: str) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(
                    delete(PreferenceDocument).where(PreferenceDocument.user_id == user_id)
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise DocumentStoreError(f"Failed to delete preferences for {user_id}") from exc

    def subscribe(self, user_id: str, on_change: DocumentListener) -> Unsubscribe:
        listeners = self._listeners.setdefault(user_id, [])
        listeners.append(on_change)

        def _unsubscribe() -> None:
            registered = self._listeners.get(user_id, [])
            if on_change in registered:
                registered.remove(on_change)
            if not registered:
                self._listeners.pop(user_id, None)

        return _unsubscribe

    def _notify(self, user_id: str, preferences: PreferenceSet) -> None:
        for listener in list(self._listeners.get(user_id, [])):
            try:
                listener(preferences.model_copy(deep=True))
            except Exception:
                logger.exception("Preference subscriber for %s failed", user_id)
