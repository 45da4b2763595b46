"""Filtering, scoring and ordering of title collections.

Everything here is pure: lists in, new lists out. Input titles are never
mutated; scored titles are returned as copies.
"""

from __future__ import annotations

import math
import re
from typing import Callable, Iterable, Mapping, Sequence, TypeVar

from .models import (
    DiscoverFilters,
    OfferKind,
    ProcessedProviders,
    SortKey,
    StreamingOption,
    Title,
    Trailer,
    WatchProvider,
)
from .utils import extract_year

# News, Talk-Show
BLOCK_GENRES = frozenset({10763, 10767})

# Animation, Family, Reality, Soap
PENALTY_GENRES = frozenset({16, 10751, 10764, 10766})
PENALTY_MULTIPLIER = 0.6

BLOCK_KEYWORDS: tuple[re.Pattern[str], ...] = (
    re.compile(r"late\s?night", re.IGNORECASE),
    re.compile(r"tonight\s?show", re.IGNORECASE),
    re.compile(r"conan", re.IGNORECASE),
    re.compile(r"gre(y|ey)'?s?\s+anatomy", re.IGNORECASE),
    re.compile(r"^ncis", re.IGNORECASE),
    re.compile(r"csi", re.IGNORECASE),
)

MIN_FIRST_AIR_YEAR = 2000

POPULARITY_WEIGHT = 0.3
QUALITY_WEIGHT = 0.7

STREAMING_PRIORITY: tuple[str, ...] = (
    "Netflix",
    "Amazon Prime Video",
    "Disney Plus",
    "HBO Max",
    "Apple TV Plus",
    "Paramount Plus",
    "Peacock",
    "Hulu",
    "Crunchyroll",
    "Funimation",
)

AD_FREE_SERVICES = frozenset(
    {
        "Netflix",
        "Amazon Prime Video",
        "Disney Plus",
        "HBO Max",
        "Apple TV Plus",
        "Paramount Plus",
        "Crunchyroll",
        "Funimation",
    }
)

SERVICE_DISPLAY_NAMES = {
    "Amazon Prime Video": "Prime Video",
    "Disney Plus": "Disney+",
    "HBO Max": "Max",
    "Apple TV Plus": "Apple TV+",
    "Paramount Plus": "Paramount+",
}

OFFER_KIND_LABELS: dict[OfferKind, str] = {
    "stream-subscription": "Subscription",
    "stream-ads": "With Ads",
    "rent": "Rent",
    "buy": "Buy",
    "free": "Free",
}

# Ordinal scale used to turn a set of TV certifications into a range.
TV_CERTIFICATION_ORDER: tuple[str, ...] = ("TV-Y", "TV-G", "TV-PG", "TV-14", "TV-MA")

OptionT = TypeVar("OptionT")


# ----------------------------
# TV relevance scoring
# ----------------------------


def is_blocked_show(show: Title) -> bool:
    """Return True when a show should be dropped from relevance lists."""

    if BLOCK_GENRES.intersection(show.genre_ids):
        return True
    name = show.display_name or ""
    if any(pattern.search(name) for pattern in BLOCK_KEYWORDS):
        return True
    year = extract_year(show.release_date)
    if year is not None and year < MIN_FIRST_AIR_YEAR:
        return True
    return False


def quality_score(vote_average: float, vote_count: int) -> float:
    """Blend rating and vote volume; never decreases as votes grow."""

    return vote_average * math.log10(max(vote_count, 0) + 1)


def composite_score(show: Title) -> float:
    base = (
        show.popularity * POPULARITY_WEIGHT
        + quality_score(show.vote_average, show.vote_count) * QUALITY_WEIGHT
    )
    if PENALTY_GENRES.intersection(show.genre_ids):
        base *= PENALTY_MULTIPLIER
    return base


def refine_tv_shows(shows: Iterable[Title]) -> list[Title]:
    """Drop unwanted shows and order the rest by composite relevance.

    The returned titles carry the composite score in ``popularity`` and the
    provider's value in ``raw_popularity``. Ties keep their input order.
    """

    scored = [
        show.model_copy(
            update={"raw_popularity": show.popularity, "popularity": composite_score(show)}
        )
        for show in shows
        if not is_blocked_show(show)
    ]
    return sorted(scored, key=lambda show: show.popularity, reverse=True)


# ----------------------------
# Streaming provider selection
# ----------------------------


def _option_name(option: object) -> str | None:
    if isinstance(option, Mapping):
        value = option.get("name") or option.get("provider_name")
    else:
        value = getattr(option, "name", None) or getattr(option, "provider_name", None)
    return value if isinstance(value, str) else None


def pick_best_streaming_option(options: Sequence[OptionT] | None) -> OptionT | None:
    """Choose the single offer to promote from a list of options.

    Ad-free major services are preferred in priority order, then any service
    in priority order, then whatever came first.
    """

    if not options:
        return None

    ad_free = [option for option in options if _option_name(option) in AD_FREE_SERVICES]
    for name in STREAMING_PRIORITY:
        for option in ad_free:
            if _option_name(option) == name:
                return option

    for name in STREAMING_PRIORITY:
        for option in options:
            if _option_name(option) == name:
                return option

    return options[0]


def streaming_options(providers: ProcessedProviders) -> list[StreamingOption]:
    return [
        StreamingOption(name=provider.provider_name, offer_kind=provider.offer_kind)
        for provider in providers.stream_providers
    ]


def select_region_providers(
    results: Mapping[str, Mapping[OfferKind, Sequence[WatchProvider]]] | None,
    region: str,
    *,
    fallback_region: str = "US",
) -> ProcessedProviders:
    """Group one region's offers, falling back to ``fallback_region``."""

    if not results:
        return ProcessedProviders(region=region)
    offers = results.get(region) or results.get(fallback_region)
    if not offers:
        return ProcessedProviders(region=region)

    return ProcessedProviders(
        region=region,
        stream_providers=[
            *offers.get("stream-subscription", []),
            *offers.get("stream-ads", []),
        ],
        rent_providers=list(offers.get("rent", [])),
        buy_providers=list(offers.get("buy", [])),
        free_providers=list(offers.get("free", [])),
    )


def format_service_name(name: str) -> str:
    return SERVICE_DISPLAY_NAMES.get(name, name)


def offer_kind_label(kind: str) -> str:
    return OFFER_KIND_LABELS.get(kind, kind)  # type: ignore[call-overload]


def pick_trailer(videos: Sequence[Trailer]) -> Trailer | None:
    """Prefer an official YouTube trailer, then any trailer, then a teaser."""

    youtube = [video for video in videos if video.site == "YouTube"]
    for candidate in youtube:
        if candidate.type == "Trailer" and candidate.official:
            return candidate
    for candidate in youtube:
        if candidate.type == "Trailer":
            return candidate
    for candidate in youtube:
        if candidate.type == "Teaser":
            return candidate
    return None


# ----------------------------
# Filter predicates
# ----------------------------

TitlePredicate = Callable[[Title], bool]


def genre_include_predicate(genres: Iterable[int]) -> TitlePredicate:
    wanted = frozenset(genres)
    if not wanted:
        return lambda _: True
    return lambda title: bool(wanted.intersection(title.genre_ids))


def genre_exclude_predicate(genres: Iterable[int]) -> TitlePredicate:
    unwanted = frozenset(genres)
    if not unwanted:
        return lambda _: True
    return lambda title: not unwanted.intersection(title.genre_ids)


def rating_range_predicate(
    min_rating: float | None, max_rating: float | None
) -> TitlePredicate:
    def _predicate(title: Title) -> bool:
        if min_rating is not None and title.vote_average < min_rating:
            return False
        if max_rating is not None and title.vote_average > max_rating:
            return False
        return True

    return _predicate


def certification_predicate(
    allowed: Iterable[str], certifications: Mapping[int, str | None]
) -> TitlePredicate:
    """Match titles whose known certification is one of ``allowed``.

    ``certifications`` maps title ids to their looked-up rating; titles
    without a known rating fail once any rating has been selected.
    """

    wanted = frozenset(allowed)
    if not wanted:
        return lambda _: True
    return lambda title: certifications.get(title.id) in wanted


def build_title_predicate(
    filters: DiscoverFilters,
    certifications: Mapping[int, str | None] | None = None,
) -> TitlePredicate:
    """Compose every filter dimension into one predicate."""

    predicates = [
        genre_include_predicate(filters.genres),
        genre_exclude_predicate(filters.exclude_genres),
        rating_range_predicate(filters.min_rating, filters.max_rating),
    ]
    if filters.age_ratings:
        predicates.append(
            certification_predicate(filters.age_ratings, certifications or {})
        )
    return lambda title: all(predicate(title) for predicate in predicates)


def filter_titles(
    titles: Iterable[Title],
    filters: DiscoverFilters,
    certifications: Mapping[int, str | None] | None = None,
) -> list[Title]:
    predicate = build_title_predicate(filters, certifications)
    return [title for title in titles if predicate(title)]


def certification_range(ratings: Iterable[str]) -> tuple[str, str] | None:
    """Return the (lowest, highest) TV certification among ``ratings``."""

    known = [rating for rating in ratings if rating in TV_CERTIFICATION_ORDER]
    if not known:
        return None
    ordered = sorted(known, key=TV_CERTIFICATION_ORDER.index)
    return ordered[0], ordered[-1]


# ----------------------------
# Ordering and merging
# ----------------------------


def sort_titles(titles: Iterable[Title], sort_by: SortKey | None) -> list[Title]:
    """Stable sort by one of the discover sort keys; ``None`` keeps order."""

    items = list(titles)
    if sort_by is None:
        return items
    if sort_by == "popularity.desc":
        return sorted(items, key=lambda title: title.popularity, reverse=True)
    if sort_by == "vote_average.desc":
        return sorted(items, key=lambda title: title.vote_average, reverse=True)
    if sort_by == "release_date.desc":
        return sorted(items, key=lambda title: title.release_date or "", reverse=True)
    return sorted(items, key=lambda title: title.display_name.casefold())


def merge_unique(*collections: Iterable[Title]) -> list[Title]:
    """Concatenate collections keeping the first title seen for each id."""

    seen: set[int] = set()
    merged: list[Title] = []
    for collection in collections:
        for title in collection:
            if title.id in seen:
                continue
            seen.add(title.id)
            merged.append(title)
    return merged
