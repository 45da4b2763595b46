"""Natural-language search: ask the model for titles, then resolve them."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from ..config import Settings
from ..models import AISearchResult, MediaType, Title
from ..ranking import merge_unique
from ..utils import parse_title_list
from .tmdb import ContentGatewayError, TMDBClient

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = (
    "Act as a recommendation engine and suggest up to {limit} relevant {type_phrase} "
    "based on the user's input: {query}. Give me only the titles as a "
    "comma-separated list, and ensure no extra text is added."
)


class CompletionClient(Protocol):
    async def complete(self, prompt: str) -> str: ...


def detect_media_types(query: str) -> tuple[MediaType, ...]:
    """Guess which kinds of title the user is asking for."""

    text = query.lower()
    wants_movies = "movie" in text
    wants_shows = "tv show" in text or "series" in text
    if wants_movies and not wants_shows:
        return ("movie",)
    if wants_shows and not wants_movies:
        return ("tv",)
    return ("movie", "tv")


def type_phrase(media_types: tuple[MediaType, ...]) -> str:
    if media_types == ("movie",):
        return "movies"
    if media_types == ("tv",):
        return "TV shows"
    return "movies and TV shows"


class AISearchService:
    """Turn a free-text request into titles known to the metadata service."""

    def __init__(
        self,
        settings: Settings,
        completion: CompletionClient,
        tmdb: TMDBClient,
    ):
        self._settings = settings
        self._completion = completion
        self._tmdb = tmdb

    def build_prompt(self, query: str) -> str:
        return PROMPT_TEMPLATE.format(
            limit=self._settings.ai_suggestion_limit,
            type_phrase=type_phrase(detect_media_types(query)),
            query=query,
        )

    async def search(self, query: str) -> AISearchResult:
        query = query.strip()
        if not query:
            return AISearchResult(query=query)

        media_types = detect_media_types(query)
        answer = await self._completion.complete(self.build_prompt(query))
        suggestions = parse_title_list(answer, limit=self._settings.ai_suggestion_limit)
        if not suggestions:
            logger.info("Model answer for %r contained no titles", query)
            return AISearchResult(query=query)

        matches = await asyncio.gather(
            *(self._resolve(name, media_types) for name in suggestions)
        )
        results = merge_unique(match for match in matches if match is not None)
        logger.info(
            "AI search %r: %s suggestions, %s resolved", query, len(suggestions), len(results)
        )
        return AISearchResult(query=query, suggestions=suggestions, results=results)

    async def _resolve(
        self, name: str, media_types: tuple[MediaType, ...]
    ) -> Title | None:
        """Return the most popular exact-name match for ``name``, if any."""

        wanted = name.strip().casefold()
        candidates: list[Title] = []
        for media_type in media_types:
            try:
                page = await self._tmdb.search_titles(name, media_type)
            except ContentGatewayError:
                logger.warning("Lookup of suggested %s %r failed", media_type, name)
                continue
            candidates.extend(page.results)

        exact = [
            title
            for title in candidates
            if title.display_name.strip().casefold() == wanted
        ]
        if not exact:
            return None
        return max(exact, key=lambda title: title.popularity)
