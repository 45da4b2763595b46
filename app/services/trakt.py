"""Utilities for communicating with the Trakt API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ..config import Settings
from ..models import MediaType, TraktRating

logger = logging.getLogger(__name__)

TRAKT_TYPES: dict[MediaType, str] = {"movie": "movie", "tv": "show"}


class TraktClient:
    """Thin wrapper around the Trakt ratings endpoints."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._max_retries = 3

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "trakt-api-version": "2",
            "User-Agent": f"{self._settings.app_name} (cinematch)",
        }
        if self._settings.trakt_client_id:
            headers["trakt-api-key"] = self._settings.trakt_client_id
        return headers

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response | None:
        """GET with retries on transient errors; ``None`` once retries run out."""

        attempt = 0
        while True:
            try:
                response = await self._client.get(url, headers=self._headers(), params=params)
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Transient error talking to Trakt (%s). Retrying %s in %.1fs",
                        exc.__class__.__name__,
                        url,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                logger.warning("Failed to reach Trakt for %s: %s", url, exc)
                return None

            if 500 <= response.status_code < 600:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Trakt 5xx for %s. Retrying in %.1fs", url, backoff
                    )
                    await asyncio.sleep(backoff)
                    continue
                logger.warning("Trakt request %s failed: %s", url, response.text)
                return None
            return response

    async def find_slug_by_tmdb_id(
        self, tmdb_id: int, media_type: MediaType = "movie"
    ) -> str | None:
        """Resolve a TMDB id to the Trakt slug; ``None`` when Trakt has no match."""

        kind = TRAKT_TYPES[media_type]
        response = await self._get(f"/search/tmdb/{tmdb_id}", params={"type": kind})
        if response is None or response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning(
                "Trakt search for tmdb %s failed: %s", tmdb_id, response.status_code
            )
            return None
        try:
            data = response.json()
        except ValueError:
            logger.warning("Unexpected non-JSON Trakt search response for %s", tmdb_id)
            return None
        if not isinstance(data, list) or not data:
            return None
        entry = data[0].get(kind) if isinstance(data[0], dict) else None
        if not isinstance(entry, dict):
            return None
        slug = (entry.get("ids") or {}).get("slug")
        return str(slug) if slug else None

    async def ratings_by_slug(
        self, slug: str, media_type: MediaType = "movie"
    ) -> TraktRating | None:
        collection = "movies" if media_type == "movie" else "shows"
        response = await self._get(f"/{collection}/{slug}/ratings")
        if response is None or response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.warning("Trakt ratings for %s failed: %s", slug, response.status_code)
            return None
        try:
            data = response.json()
        except ValueError:
            logger.warning("Unexpected non-JSON Trakt ratings response for %s", slug)
            return None
        if not isinstance(data, dict) or data.get("rating") is None:
            return None
        distribution = data.get("distribution") or {}
        return TraktRating(
            rating=float(data["rating"]),
            votes=int(data.get("votes") or 0),
            distribution={
                str(key): int(value)
                for key, value in distribution.items()
                if isinstance(value, (int, float))
            },
        )

    async def get_ratings(
        self, tmdb_id: int, media_type: MediaType = "movie"
    ) -> TraktRating | None:
        """Look up community ratings for a TMDB title."""

        slug = await self.find_slug_by_tmdb_id(tmdb_id, media_type)
        if slug is None:
            return None
        return await self.ratings_by_slug(slug, media_type)
