"""Pydantic models describing titles, providers and user preferences."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils import extract_year

MediaType = Literal["movie", "tv"]
OfferKind = Literal["stream-subscription", "stream-ads", "rent", "buy", "free"]
SortKey = Literal[
    "popularity.desc", "vote_average.desc", "release_date.desc", "title.asc"
]
TabSelection = Literal["all", "movies", "tv"]

MEDIA_TYPES: tuple[MediaType, ...] = ("movie", "tv")
GenreMode = Literal["include", "exclude"]
DEFAULT_SORT: SortKey = "popularity.desc"


class Title(BaseModel):
    """A movie or TV show normalised at the gateway boundary.

    ``media_type`` is assigned once in :meth:`from_tmdb`; nothing downstream
    infers it from which name field a payload happened to carry.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: int
    media_type: MediaType
    display_name: str = ""
    release_date: str | None = None
    popularity: float = Field(default=0.0, ge=0)
    raw_popularity: float | None = None
    vote_average: float = Field(default=0.0, ge=0, le=10)
    vote_count: int = Field(default=0, ge=0)
    genre_ids: list[int] = Field(default_factory=list)
    poster_path: str | None = None
    backdrop_path: str | None = None
    overview: str | None = None

    @field_validator("genre_ids", mode="before")
    @classmethod
    def _dedupe_genres(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, (list, tuple, set, frozenset)):
            unique: list[Any] = []
            for entry in value:
                if entry not in unique:
                    unique.append(entry)
            return unique
        return value

    @field_validator("release_date", mode="before")
    @classmethod
    def _blank_date(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def year(self) -> int | None:
        return extract_year(self.release_date)

    @classmethod
    def from_tmdb(
        cls, payload: Mapping[str, Any], media_type: MediaType | None = None
    ) -> "Title | None":
        """Normalise a raw metadata-service result.

        ``media_type`` is taken from the payload when present (multi search)
        and otherwise from the endpoint that produced it. Results that are
        neither movies nor shows (people) yield ``None``.
        """

        kind = payload.get("media_type") or media_type
        if kind not in MEDIA_TYPES:
            return None
        raw_id = payload.get("id")
        if raw_id is None:
            return None

        if kind == "movie":
            name = payload.get("title") or payload.get("original_title") or ""
            date = payload.get("release_date")
        else:
            name = payload.get("name") or payload.get("original_name") or ""
            date = payload.get("first_air_date")

        genre_ids = payload.get("genre_ids")
        if genre_ids is None and isinstance(payload.get("genres"), list):
            genre_ids = [
                genre.get("id")
                for genre in payload["genres"]
                if isinstance(genre, Mapping) and genre.get("id") is not None
            ]

        vote_average = float(payload.get("vote_average") or 0.0)
        return cls(
            id=int(raw_id),
            media_type=kind,
            display_name=str(name),
            release_date=date or None,
            popularity=max(float(payload.get("popularity") or 0.0), 0.0),
            vote_average=min(max(vote_average, 0.0), 10.0),
            vote_count=max(int(payload.get("vote_count") or 0), 0),
            genre_ids=genre_ids or [],
            poster_path=payload.get("poster_path"),
            backdrop_path=payload.get("backdrop_path"),
            overview=payload.get("overview") or None,
        )


class Genre(BaseModel):
    id: int
    name: str


class TitleDetails(Title):
    """Extended record returned by the details endpoint."""

    genres: list[Genre] = Field(default_factory=list)
    runtime: int | None = None
    number_of_seasons: int | None = None
    number_of_episodes: int | None = None
    status: str | None = None
    tagline: str | None = None

    @classmethod
    def from_tmdb_details(
        cls, payload: Mapping[str, Any], media_type: MediaType
    ) -> "TitleDetails | None":
        base = Title.from_tmdb({**payload, "media_type": media_type})
        if base is None:
            return None
        runtime = payload.get("runtime")
        if runtime is None:
            episode_runtimes = payload.get("episode_run_time") or []
            runtime = episode_runtimes[0] if episode_runtimes else None
        return cls(
            **base.model_dump(),
            genres=[
                Genre(id=genre["id"], name=genre.get("name", ""))
                for genre in payload.get("genres") or []
                if isinstance(genre, Mapping) and "id" in genre
            ],
            runtime=runtime,
            number_of_seasons=payload.get("number_of_seasons"),
            number_of_episodes=payload.get("number_of_episodes"),
            status=payload.get("status"),
            tagline=payload.get("tagline") or None,
        )


class TitlePage(BaseModel):
    """One page of a paginated metadata-service listing."""

    page: int = 1
    results: list[Title] = Field(default_factory=list)
    total_pages: int = 0
    total_results: int = 0

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @classmethod
    def empty(cls) -> "TitlePage":
        return cls(page=1, results=[], total_pages=0, total_results=0)


class Trailer(BaseModel):
    key: str
    name: str = ""
    site: str = ""
    type: str = ""
    official: bool = False
    size: int | None = None


class WatchProvider(BaseModel):
    """A single streaming, rental or purchase offer."""

    provider_id: int
    provider_name: str
    logo_path: str | None = None
    offer_kind: OfferKind = "stream-subscription"


RegionProviders = dict[OfferKind, list[WatchProvider]]


class ProcessedProviders(BaseModel):
    """Watch providers for one region, grouped the way the details view shows them."""

    region: str
    stream_providers: list[WatchProvider] = Field(default_factory=list)
    rent_providers: list[WatchProvider] = Field(default_factory=list)
    buy_providers: list[WatchProvider] = Field(default_factory=list)
    free_providers: list[WatchProvider] = Field(default_factory=list)

    @property
    def total_providers(self) -> int:
        return (
            len(self.stream_providers)
            + len(self.rent_providers)
            + len(self.buy_providers)
            + len(self.free_providers)
        )

    @property
    def has_providers(self) -> bool:
        return self.total_providers > 0


class StreamingOption(BaseModel):
    name: str
    offer_kind: OfferKind | None = None


class TraktRating(BaseModel):
    rating: float
    votes: int
    distribution: dict[str, int] = Field(default_factory=dict)


class UserList(BaseModel):
    """A named, user-curated collection of titles."""

    id: str
    name: str
    description: str = ""
    items: list[Title] = Field(default_factory=list)
    created_at: str
    updated_at: str | None = None


class PreferenceSet(BaseModel):
    """The per-user document synchronised with the cloud store."""

    favorites: list[Title] = Field(default_factory=list)
    watchlist: list[Title] = Field(default_factory=list)
    lists: list[UserList] = Field(default_factory=list)
    last_synced_at: datetime | None = None

    def synced_fields(self) -> dict[str, Any]:
        """Return the favorites/watchlist/lists triple as plain JSON data."""

        return self.model_dump(
            mode="json", include={"favorites", "watchlist", "lists"}
        )

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "PreferenceSet":
        """Build a preference set from a stored document, tolerating gaps."""

        return cls.model_validate(
            {
                "favorites": data.get("favorites") or [],
                "watchlist": data.get("watchlist") or [],
                "lists": data.get("lists") or [],
                "last_synced_at": data.get("last_synced_at")
                or data.get("lastUpdated"),
            }
        )


class DiscoverFilters(BaseModel):
    """Query filters accepted by the discover endpoints."""

    genres: list[int] = Field(default_factory=list)
    exclude_genres: list[int] = Field(default_factory=list)
    min_rating: float | None = Field(default=None, ge=0, le=10)
    max_rating: float | None = Field(default=None, ge=0, le=10)
    age_ratings: list[str] = Field(default_factory=list)
    sort_by: SortKey | None = None
    page: int = Field(default=1, ge=1)

    def is_empty(self) -> bool:
        """True when no filter that narrows discovery has been chosen."""

        # Rating bounds of zero are treated as unset.
        return (
            not self.genres
            and not self.min_rating
            and not self.max_rating
            and not self.age_ratings
            and self.sort_by is None
        )


class FilterState(BaseModel):
    """Browse filter selections as edited by the user."""

    genre_filters: dict[int, GenreMode] = Field(default_factory=dict)
    min_rating: float = Field(default=0.0, ge=0, le=10)
    max_rating: float = Field(default=10.0, ge=0, le=10)
    movie_age_ratings: list[str] = Field(default_factory=list)
    tv_age_ratings: list[str] = Field(default_factory=list)
    sort_by: SortKey = DEFAULT_SORT

    def cycle_genre(self, genre_id: int) -> GenreMode | None:
        """Advance a genre through none -> include -> exclude -> none."""

        current = self.genre_filters.get(genre_id)
        if current is None:
            self.genre_filters[genre_id] = "include"
        elif current == "include":
            self.genre_filters[genre_id] = "exclude"
        else:
            self.genre_filters.pop(genre_id, None)
        return self.genre_filters.get(genre_id)

    def toggle_age_rating(self, media_type: MediaType, rating: str) -> None:
        selected = self.movie_age_ratings if media_type == "movie" else self.tv_age_ratings
        if rating in selected:
            selected.remove(rating)
        else:
            selected.append(rating)

    def clear(self) -> None:
        defaults = FilterState()
        for name in type(self).model_fields:
            setattr(self, name, getattr(defaults, name))

    @property
    def has_active_filters(self) -> bool:
        return (
            bool(self.genre_filters)
            or self.min_rating > 0
            or self.max_rating < 10
            or bool(self.movie_age_ratings)
            or bool(self.tv_age_ratings)
            or self.sort_by != DEFAULT_SORT
        )

    def to_discover_filters(self, media_type: MediaType, *, page: int = 1) -> DiscoverFilters:
        age_ratings = (
            self.movie_age_ratings if media_type == "movie" else self.tv_age_ratings
        )
        return DiscoverFilters(
            genres=[gid for gid, mode in self.genre_filters.items() if mode == "include"],
            exclude_genres=[
                gid for gid, mode in self.genre_filters.items() if mode == "exclude"
            ],
            min_rating=self.min_rating if self.min_rating > 0 else None,
            max_rating=self.max_rating if self.max_rating < 10 else None,
            age_ratings=list(age_ratings),
            sort_by=None if self.sort_by == DEFAULT_SORT else self.sort_by,
            page=page,
        )


class AISearchResult(BaseModel):
    """Outcome of a natural-language search."""

    query: str
    suggestions: list[str] = Field(default_factory=list)
    results: list[Title] = Field(default_factory=list)
