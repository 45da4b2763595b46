"""Present movie and TV discover results as one infinite list."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Literal

from pydantic import BaseModel, Field

from ..models import (
    MEDIA_TYPES,
    FilterState,
    MediaType,
    SortKey,
    TabSelection,
    Title,
    TitlePage,
)
from ..ranking import merge_unique, refine_tv_shows, sort_titles
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)

PageFetcher = Callable[[MediaType, int], Awaitable[TitlePage]]
CollectionStatus = Literal["idle", "fetching", "ready", "fetching_next", "exhausted"]

TAB_MEDIA_TYPES: dict[TabSelection, tuple[MediaType, ...]] = {
    "all": MEDIA_TYPES,
    "movies": ("movie",),
    "tv": ("tv",),
}


@dataclass(slots=True)
class CollectionState:
    """Pagination state of one backend collection."""

    media_type: MediaType
    status: CollectionStatus = "idle"
    pages: list[TitlePage] = field(default_factory=list)
    error: Exception | None = None

    @property
    def next_page(self) -> int | None:
        if self.status == "exhausted":
            return None
        if not self.pages:
            return 1
        last = self.pages[-1]
        return last.page + 1 if last.has_next_page else None

    @property
    def has_next_page(self) -> bool:
        return self.next_page is not None

    @property
    def is_loading(self) -> bool:
        return self.status in ("fetching", "fetching_next")

    @property
    def items(self) -> list[Title]:
        return [title for page in self.pages for title in page.results]

    @property
    def total_results(self) -> int:
        return self.pages[-1].total_results if self.pages else 0


class MergedView(BaseModel):
    """Snapshot handed to the UI layer."""

    items: list[Title] = Field(default_factory=list)
    is_loading: bool = False
    has_error: bool = False
    has_next_page: bool = False
    total_results: int = 0


class PaginatedMergeController:
    """Coordinate two paginated collections behind one scrollable list.

    Fetches for different collections run concurrently and fail
    independently: an error is recorded on the collection that raised it
    while already loaded pages of either collection stay visible.
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        *,
        tab: TabSelection = "all",
        sort_by: SortKey | None = None,
        refine_tv: bool = False,
    ):
        self._fetch_page = fetch_page
        self._tab: TabSelection = tab
        self._sort_by = sort_by
        self._refine_tv = refine_tv
        self.collections: dict[MediaType, CollectionState] = {
            media_type: CollectionState(media_type) for media_type in MEDIA_TYPES
        }

    @classmethod
    def for_discover(
        cls,
        tmdb: TMDBClient,
        filters: FilterState,
        *,
        tab: TabSelection = "all",
        sort_by: SortKey | None = None,
    ) -> "PaginatedMergeController":
        """Build a controller paging through discover with ``filters``."""

        async def fetch(media_type: MediaType, page: int) -> TitlePage:
            return await tmdb.discover(
                media_type, filters.to_discover_filters(media_type, page=page)
            )

        return cls(fetch, tab=tab, sort_by=sort_by)

    @property
    def tab(self) -> TabSelection:
        return self._tab

    @property
    def active_media_types(self) -> tuple[MediaType, ...]:
        return TAB_MEDIA_TYPES[self._tab]

    def set_tab(self, tab: TabSelection) -> None:
        self._tab = tab

    def set_sort(self, sort_by: SortKey | None) -> None:
        self._sort_by = sort_by

    def _active(self) -> list[CollectionState]:
        return [self.collections[media_type] for media_type in self.active_media_types]

    @property
    def items(self) -> list[Title]:
        merged = merge_unique(*(state.items for state in self._active()))
        return sort_titles(merged, self._sort_by)

    @property
    def is_loading(self) -> bool:
        return any(state.is_loading for state in self._active())

    @property
    def has_error(self) -> bool:
        return any(state.error is not None for state in self._active())

    @property
    def has_next_page(self) -> bool:
        return any(state.has_next_page for state in self._active())

    @property
    def total_results(self) -> int:
        return sum(state.total_results for state in self._active())

    def view(self) -> MergedView:
        return MergedView(
            items=self.items,
            is_loading=self.is_loading,
            has_error=self.has_error,
            has_next_page=self.has_next_page,
            total_results=self.total_results,
        )

    async def load(self) -> MergedView:
        """Fetch the first page of every active collection not yet loaded."""

        pending = [
            state
            for state in self._active()
            if not state.pages and not state.is_loading and state.status != "exhausted"
        ]
        await asyncio.gather(*(self._fetch(state, 1) for state in pending))
        return self.view()

    async def fetch_next_page(self) -> MergedView:
        """Advance each active collection that has another page.

        Collections without a further page, or with a fetch already in
        flight, are left untouched.
        """

        tasks = []
        for state in self._active():
            if state.is_loading:
                continue
            next_page = state.next_page
            if next_page is None:
                continue
            tasks.append(self._fetch(state, next_page))
        if tasks:
            await asyncio.gather(*tasks)
        return self.view()

    async def reset(self) -> MergedView:
        """Drop every loaded page and fetch page one again."""

        for media_type in MEDIA_TYPES:
            self.collections[media_type] = CollectionState(media_type)
        return await self.load()

    async def _fetch(self, state: CollectionState, page: int) -> None:
        state.status = "fetching" if page == 1 else "fetching_next"
        try:
            result = await self._fetch_page(state.media_type, page)
        except Exception as exc:
            logger.warning(
                "Fetching %s page %s failed: %s", state.media_type, page, exc
            )
            state.error = exc
            state.status = "ready" if state.pages else "idle"
            return

        if state.media_type == "tv" and self._refine_tv:
            result = result.model_copy(update={"results": refine_tv_shows(result.results)})
        state.pages.append(result)
        state.error = None
        state.status = "ready" if result.has_next_page else "exhausted"
