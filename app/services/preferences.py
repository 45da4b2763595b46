"""In-memory source of truth for favorites, watchlist and custom lists."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Iterable

from ..models import PreferenceSet, Title, UserList

logger = logging.getLogger(__name__)

PreferenceListener = Callable[[PreferenceSet], None]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PreferenceStore:
    """Holds one user's :class:`PreferenceSet` and notifies subscribers.

    Mutators are synchronous and total: unknown ids are ignored rather than
    raising. Every mutation publishes a fresh deep-copied snapshot, so a
    listener can keep what it receives without it changing underneath.
    Entries are unique by numeric id only, regardless of media type.
    """

    def __init__(self, initial: PreferenceSet | None = None):
        self._state = initial.model_copy(deep=True) if initial else PreferenceSet()
        self._listeners: list[PreferenceListener] = []
        self._last_list_id = 0

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def favorites(self) -> list[Title]:
        return list(self._state.favorites)

    @property
    def watchlist(self) -> list[Title]:
        return list(self._state.watchlist)

    @property
    def lists(self) -> list[UserList]:
        return list(self._state.lists)

    def snapshot(self) -> PreferenceSet:
        return self._state.model_copy(deep=True)

    def is_favorite(self, title_id: int) -> bool:
        return any(item.id == title_id for item in self._state.favorites)

    def is_in_watchlist(self, title_id: int) -> bool:
        return any(item.id == title_id for item in self._state.watchlist)

    def get_list(self, list_id: str) -> UserList | None:
        for user_list in self._state.lists:
            if user_list.id == list_id:
                return user_list.model_copy(deep=True)
        return None

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: PreferenceListener) -> Callable[[], None]:
        """Register ``listener`` and return a function that removes it."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.snapshot())
            except Exception:
                logger.exception("Preference listener failed")

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    @staticmethod
    def _toggle(collection: list[Title], title: Title) -> bool:
        for index, item in enumerate(collection):
            if item.id == title.id:
                del collection[index]
                return False
        collection.append(title.model_copy(deep=True))
        return True

    def toggle_favorite(self, title: Title) -> bool:
        """Add or remove ``title``; returns True when it is now a favorite."""

        added = self._toggle(self._state.favorites, title)
        self._publish()
        return added

    def toggle_watchlist(self, title: Title) -> bool:
        added = self._toggle(self._state.watchlist, title)
        self._publish()
        return added

    def _next_list_id(self) -> str:
        # Millisecond timestamps, bumped when two lists land in the same tick.
        candidate = int(time.time() * 1000)
        if candidate <= self._last_list_id:
            candidate = self._last_list_id + 1
        existing = {user_list.id for user_list in self._state.lists}
        while str(candidate) in existing:
            candidate += 1
        self._last_list_id = candidate
        return str(candidate)

    def create_list(self, name: str, description: str = "") -> UserList:
        user_list = UserList(
            id=self._next_list_id(),
            name=name,
            description=description,
            items=[],
            created_at=_now_iso(),
        )
        self._state.lists.append(user_list)
        self._publish()
        return user_list.model_copy(deep=True)

    def _find_list(self, list_id: str) -> UserList | None:
        for user_list in self._state.lists:
            if user_list.id == list_id:
                return user_list
        return None

    def add_to_list(self, list_id: str, title: Title) -> None:
        user_list = self._find_list(list_id)
        if user_list is None:
            return
        if any(item.id == title.id for item in user_list.items):
            return
        user_list.items.append(title.model_copy(deep=True))
        user_list.updated_at = _now_iso()
        self._publish()

    def remove_from_list(self, list_id: str, item_id: int) -> None:
        user_list = self._find_list(list_id)
        if user_list is None:
            return
        for index, item in enumerate(user_list.items):
            if item.id == item_id:
                del user_list.items[index]
                user_list.updated_at = _now_iso()
                self._publish()
                return

    def delete_list(self, list_id: str) -> None:
        for index, user_list in enumerate(self._state.lists):
            if user_list.id == list_id:
                del self._state.lists[index]
                self._publish()
                return

    # ------------------------------------------------------------------
    # Wholesale replacement (remote pulls, sign-out)
    # ------------------------------------------------------------------

    def replace(
        self,
        *,
        favorites: Iterable[Title],
        watchlist: Iterable[Title],
        lists: Iterable[UserList],
        last_synced_at: datetime | None = None,
    ) -> None:
        self._state = PreferenceSet(
            favorites=[item.model_copy(deep=True) for item in favorites],
            watchlist=[item.model_copy(deep=True) for item in watchlist],
            lists=[item.model_copy(deep=True) for item in lists],
            last_synced_at=last_synced_at or self._state.last_synced_at,
        )
        self._publish()

    def mark_synced(self, when: datetime) -> None:
        """Record a successful reconciliation without notifying listeners."""

        self._state.last_synced_at = when

    def clear(self) -> None:
        self._state = PreferenceSet()
        self._publish()
