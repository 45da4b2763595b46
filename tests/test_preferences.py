"""Tests for the in-memory preference store."""

from __future__ import annotations

from datetime import datetime, timezone

from app.models import PreferenceSet, Title
from app.services.preferences import PreferenceStore


def title(title_id: int, media_type: str = "movie") -> Title:
    return Title(id=title_id, media_type=media_type, display_name=f"Title {title_id}")


def test_toggle_favorite_adds_then_removes() -> None:
    store = PreferenceStore()

    assert store.toggle_favorite(title(5)) is True
    assert [item.id for item in store.favorites] == [5]
    assert store.is_favorite(5)

    assert store.toggle_favorite(title(5)) is False
    assert store.favorites == []
    assert not store.is_favorite(5)


def test_double_toggle_restores_membership() -> None:
    store = PreferenceStore(
        PreferenceSet(favorites=[title(1), title(2)], watchlist=[title(3)])
    )
    before = {item.id for item in store.favorites}

    store.toggle_favorite(title(9))
    store.toggle_favorite(title(9))
    store.toggle_favorite(title(1))
    store.toggle_favorite(title(1))

    assert {item.id for item in store.favorites} == before
    assert [item.id for item in store.watchlist] == [3]


def test_uniqueness_is_by_id_regardless_of_media_type() -> None:
    store = PreferenceStore()
    store.toggle_watchlist(title(7, "movie"))

    assert store.toggle_watchlist(title(7, "tv")) is False
    assert not store.is_in_watchlist(7)


def test_list_lifecycle() -> None:
    store = PreferenceStore()

    first = store.create_list("Weekend", "Easy watching")
    second = store.create_list("Horror")
    assert first.id != second.id
    assert first.items == []
    assert first.created_at

    store.add_to_list(first.id, title(1))
    store.add_to_list(first.id, title(1))
    store.add_to_list(first.id, title(2))
    weekend = store.get_list(first.id)
    assert weekend is not None
    assert [item.id for item in weekend.items] == [1, 2]
    assert weekend.updated_at is not None

    store.remove_from_list(first.id, 1)
    assert [item.id for item in store.get_list(first.id).items] == [2]

    store.delete_list(second.id)
    assert [user_list.id for user_list in store.lists] == [first.id]


def test_unknown_ids_are_silent_noops() -> None:
    store = PreferenceStore()
    published: list[PreferenceSet] = []
    store.subscribe(published.append)

    store.add_to_list("missing", title(1))
    store.remove_from_list("missing", 1)
    store.delete_list("missing")
    created = store.create_list("Real")
    published.clear()
    store.remove_from_list(created.id, 404)

    assert published == []
    assert store.get_list("missing") is None


def test_subscribers_receive_independent_snapshots() -> None:
    store = PreferenceStore()
    received: list[PreferenceSet] = []
    unsubscribe = store.subscribe(received.append)

    store.toggle_favorite(title(1))
    received[0].favorites.clear()
    store.toggle_watchlist(title(2))
    unsubscribe()
    store.toggle_watchlist(title(3))

    assert len(received) == 2
    assert [item.id for item in store.favorites] == [1]
    assert [item.id for item in received[1].watchlist] == [2]


def test_failing_listener_does_not_block_others() -> None:
    store = PreferenceStore()
    calls: list[int] = []

    def broken(_: PreferenceSet) -> None:
        raise ValueError("listener bug")

    store.subscribe(broken)
    store.subscribe(lambda snapshot: calls.append(len(snapshot.favorites)))

    store.toggle_favorite(title(1))

    assert calls == [1]


def test_replace_and_mark_synced() -> None:
    store = PreferenceStore()
    received: list[PreferenceSet] = []
    store.subscribe(received.append)
    when = datetime(2024, 1, 1, tzinfo=timezone.utc)

    store.replace(favorites=[title(1)], watchlist=[], lists=[], last_synced_at=when)
    store.mark_synced(datetime(2024, 2, 1, tzinfo=timezone.utc))

    assert len(received) == 1
    assert received[0].last_synced_at == when
    assert store.snapshot().last_synced_at.month == 2


def test_clear_empties_everything() -> None:
    store = PreferenceStore(PreferenceSet(favorites=[title(1)]))
    store.create_list("List")

    store.clear()

    assert store.snapshot().synced_fields() == {
        "favorites": [],
        "watchlist": [],
        "lists": [],
    }
