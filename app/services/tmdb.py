"""Client for The Movie Database (TMDB) read endpoints."""

from __future__ import annotations

import logging
from typing import Any, Literal, Mapping

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import (
    DiscoverFilters,
    MediaType,
    OfferKind,
    RegionProviders,
    Title,
    TitleDetails,
    TitlePage,
    Trailer,
    WatchProvider,
)
from ..ranking import certification_range

logger = logging.getLogger(__name__)

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"
BACKDROP_BASE_URL = "https://image.tmdb.org/t/p/w780"

TrendingWindow = Literal["day", "week"]
BrowseCategory = Literal["trending", "popular", "top_rated", "upcoming"]

# TMDB offer keys mapped to the offer kinds used throughout the app.
OFFER_KEYS: dict[str, OfferKind] = {
    "flatrate": "stream-subscription",
    "ads": "stream-ads",
    "rent": "rent",
    "buy": "buy",
    "free": "free",
}


class ContentGatewayError(RuntimeError):
    """Raised when a metadata read fails or returns an unusable payload."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TMDBClient:
    """Stateless wrapper issuing parameterised reads against TMDB."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    def _headers(self) -> dict[str, str]:
        headers = {"accept": "application/json"}
        if self._settings.tmdb_api_key:
            headers["Authorization"] = f"Bearer {self._settings.tmdb_api_key}"
        return headers

    async def _get(self, endpoint: str, params: Mapping[str, Any] | None = None) -> Any:
        try:
            response = await self._client.get(
                endpoint, params=dict(params or {}), headers=self._headers()
            )
        except httpx.HTTPError as exc:
            logger.warning("TMDB request to %s failed: %s", endpoint, exc)
            raise ContentGatewayError(f"TMDB request failed: {exc}") from exc

        if response.status_code >= 400:
            logger.warning(
                "TMDB %s responded with %s: %s",
                endpoint,
                response.status_code,
                response.text,
            )
            raise ContentGatewayError(
                f"TMDB responded with HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ContentGatewayError("TMDB returned a non-JSON payload") from exc

    def _base_params(self, page: int | None = None) -> dict[str, Any]:
        params: dict[str, Any] = {"language": self._settings.tmdb_language}
        if page is not None:
            params["page"] = page
        return params

    @staticmethod
    def _parse_page(data: Any, media_type: MediaType | None) -> TitlePage:
        if not isinstance(data, Mapping):
            raise ContentGatewayError("Unexpected TMDB listing structure")
        results: list[Title] = []
        for entry in data.get("results") or []:
            if not isinstance(entry, Mapping):
                continue
            try:
                title = Title.from_tmdb(entry, media_type)
            except (TypeError, ValueError, ValidationError) as exc:
                logger.warning("Skipping malformed TMDB result %r: %s", entry.get("id"), exc)
                continue
            if title is not None:
                results.append(title)
        return TitlePage(
            page=int(data.get("page") or 1),
            results=results,
            total_pages=int(data.get("total_pages") or 0),
            total_results=int(data.get("total_results") or 0),
        )

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def build_discover_params(
        self, media_type: MediaType, filters: DiscoverFilters
    ) -> dict[str, Any]:
        """Translate filters into discover query parameters."""

        params = self._base_params(filters.page)
        params["include_adult"] = "false"

        if filters.genres:
            params["with_genres"] = ",".join(str(genre) for genre in filters.genres)
        if filters.exclude_genres:
            params["without_genres"] = ",".join(
                str(genre) for genre in filters.exclude_genres
            )
        # A zero bound counts as unset, so max_rating=0 does not mean "unrated only".
        if filters.min_rating and filters.min_rating > 0:
            params["vote_average.gte"] = filters.min_rating
        if filters.max_rating and filters.max_rating < 10:
            params["vote_average.lte"] = filters.max_rating

        if filters.age_ratings:
            params["certification_country"] = "US"
            if media_type == "tv":
                bounds = certification_range(filters.age_ratings)
                if bounds is not None:
                    lowest, highest = bounds
                    if lowest == highest:
                        params["certification"] = lowest
                    else:
                        params["certification.gte"] = lowest
                        params["certification.lte"] = highest
            else:
                params["certification"] = filters.age_ratings[0]

        params["sort_by"] = filters.sort_by or "popularity.desc"
        return params

    async def discover(
        self, media_type: MediaType, filters: DiscoverFilters
    ) -> TitlePage:
        """Return one discover page, or an empty page when nothing is filtered."""

        if filters.is_empty():
            logger.debug("No meaningful %s filters, skipping discover request", media_type)
            return TitlePage.empty()
        params = self.build_discover_params(media_type, filters)
        data = await self._get(f"/discover/{media_type}", params)
        return self._parse_page(data, media_type)

    async def search(self, query: str, *, page: int = 1) -> TitlePage:
        """Multi search; people are dropped from the results."""

        params = self._base_params(page)
        params.update({"query": query, "include_adult": "false"})
        data = await self._get("/search/multi", params)
        return self._parse_page(data, None)

    async def search_titles(
        self, query: str, media_type: MediaType, *, page: int = 1
    ) -> TitlePage:
        params = self._base_params(page)
        params.update({"query": query, "include_adult": "false"})
        data = await self._get(f"/search/{media_type}", params)
        return self._parse_page(data, media_type)

    async def trending(
        self, media_type: MediaType, window: TrendingWindow = "day"
    ) -> list[Title]:
        data = await self._get(f"/trending/{media_type}/{window}", self._base_params())
        return self._parse_page(data, media_type).results

    async def popular(self, media_type: MediaType, *, page: int = 1) -> list[Title]:
        data = await self._get(f"/{media_type}/popular", self._base_params(page))
        return self._parse_page(data, media_type).results

    async def top_rated(self, media_type: MediaType, *, page: int = 1) -> list[Title]:
        data = await self._get(f"/{media_type}/top_rated", self._base_params(page))
        return self._parse_page(data, media_type).results

    async def upcoming(self, media_type: MediaType, *, page: int = 1) -> list[Title]:
        endpoint = "/movie/upcoming" if media_type == "movie" else "/tv/on_the_air"
        data = await self._get(endpoint, self._base_params(page))
        return self._parse_page(data, media_type).results

    async def browse(self, media_type: MediaType, category: BrowseCategory) -> list[Title]:
        if category == "trending":
            return await self.trending(media_type)
        if category == "popular":
            return await self.popular(media_type)
        if category == "top_rated":
            return await self.top_rated(media_type)
        return await self.upcoming(media_type)

    # ------------------------------------------------------------------
    # Single title lookups
    # ------------------------------------------------------------------

    async def details(self, media_type: MediaType, title_id: int) -> TitleDetails:
        data = await self._get(f"/{media_type}/{title_id}", self._base_params())
        if not isinstance(data, Mapping):
            raise ContentGatewayError("Unexpected TMDB details structure")
        details = TitleDetails.from_tmdb_details(data, media_type)
        if details is None:
            raise ContentGatewayError(f"TMDB details missing for {media_type} {title_id}")
        return details

    async def videos(self, media_type: MediaType, title_id: int) -> list[Trailer]:
        data = await self._get(f"/{media_type}/{title_id}/videos", self._base_params())
        videos: list[Trailer] = []
        for entry in (data or {}).get("results") or []:
            if not isinstance(entry, Mapping) or not entry.get("key"):
                continue
            videos.append(
                Trailer(
                    key=str(entry["key"]),
                    name=str(entry.get("name") or ""),
                    site=str(entry.get("site") or ""),
                    type=str(entry.get("type") or ""),
                    official=bool(entry.get("official")),
                    size=entry.get("size"),
                )
            )
        return videos

    async def watch_providers(
        self, media_type: MediaType, title_id: int
    ) -> dict[str, RegionProviders]:
        """Return offers keyed by region, then by offer kind."""

        data = await self._get(f"/{media_type}/{title_id}/watch/providers")
        regions: dict[str, RegionProviders] = {}
        for region, offers in ((data or {}).get("results") or {}).items():
            if not isinstance(offers, Mapping):
                continue
            grouped: RegionProviders = {}
            for key, kind in OFFER_KEYS.items():
                providers = [
                    WatchProvider(
                        provider_id=int(entry["provider_id"]),
                        provider_name=str(entry.get("provider_name") or ""),
                        logo_path=entry.get("logo_path"),
                        offer_kind=kind,
                    )
                    for entry in offers.get(key) or []
                    if isinstance(entry, Mapping) and entry.get("provider_id") is not None
                ]
                if providers:
                    grouped[kind] = providers
            regions[str(region)] = grouped
        return regions

    async def certification(self, media_type: MediaType, title_id: int) -> str | None:
        """Return the US age rating for a title, or ``None`` when unknown."""

        if media_type == "movie":
            data = await self._get(f"/movie/{title_id}/release_dates")
            for region in (data or {}).get("results") or []:
                if region.get("iso_3166_1") != "US":
                    continue
                for release in region.get("release_dates") or []:
                    certification = (release.get("certification") or "").strip()
                    if certification:
                        return certification
            return None

        data = await self._get(f"/tv/{title_id}/content_ratings")
        for region in (data or {}).get("results") or []:
            if region.get("iso_3166_1") == "US":
                rating = (region.get("rating") or "").strip()
                return rating or None
        return None

    @staticmethod
    def build_image_url(path: str | None, base_url: str = POSTER_BASE_URL) -> str:
        if not path:
            return ""
        if path.startswith("http"):
            return path
        return f"{base_url}{path}"
