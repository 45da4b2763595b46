"""Tests for the Trakt API client helpers."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from app.config import Settings
from app.services.trakt import TraktClient


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


@pytest.fixture
def sleeps(monkeypatch) -> list[float]:
    """Record retry backoffs instead of waiting for them."""

    recorded: list[float] = []

    async def fake_sleep(delay: float) -> None:
        recorded.append(delay)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    return recorded


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base = {"TRAKT_CLIENT_ID": "client-id"}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


SEARCH_RESULT = [
    {
        "type": "movie",
        "score": 1000,
        "movie": {"title": "Heat", "ids": {"trakt": 1, "slug": "heat-1995", "tmdb": 949}},
    }
]


@pytest.mark.anyio("asyncio")
async def test_get_ratings_resolves_slug_then_ratings() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/search/tmdb/949":
            return httpx.Response(200, json=SEARCH_RESULT)
        if request.url.path == "/movies/heat-1995/ratings":
            return httpx.Response(
                200,
                json={"rating": 8.31, "votes": 12000, "distribution": {"10": 4000, "9": 3000}},
            )
        return httpx.Response(404)

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = TraktClient(build_settings(), http_client)
        rating = await client.get_ratings(949, "movie")

    assert rating is not None
    assert rating.rating == pytest.approx(8.31)
    assert rating.votes == 12000
    assert rating.distribution == {"10": 4000, "9": 3000}
    assert requests[0].url.params["type"] == "movie"
    assert requests[0].headers["trakt-api-key"] == "client-id"
    assert requests[0].headers["trakt-api-version"] == "2"


@pytest.mark.anyio("asyncio")
async def test_not_found_is_an_empty_result() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "not found"})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = TraktClient(build_settings(), http_client)
        assert await client.find_slug_by_tmdb_id(1) is None
        assert await client.ratings_by_slug("missing") is None
        assert await client.get_ratings(1) is None


@pytest.mark.anyio("asyncio")
async def test_shows_use_the_show_search_type() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["type"] == "show"
        return httpx.Response(
            200, json=[{"type": "show", "show": {"ids": {"slug": "the-wire"}}}]
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = TraktClient(build_settings(), http_client)
        assert await client.find_slug_by_tmdb_id(1438, "tv") == "the-wire"


@pytest.mark.anyio("asyncio")
async def test_server_errors_are_retried(sleeps: list[float]) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls < 3:
            return httpx.Response(502, text="bad gateway")
        return httpx.Response(200, json=SEARCH_RESULT)

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = TraktClient(build_settings(), http_client)
        slug = await client.find_slug_by_tmdb_id(949)

    assert slug == "heat-1995"
    assert calls == 3
    assert sleeps == [pytest.approx(1.1), pytest.approx(2.2)]


@pytest.mark.anyio("asyncio")
async def test_gives_up_after_retry_limit(sleeps: list[float]) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://api.example.com") as http_client:
        client = TraktClient(build_settings(), http_client)
        assert await client.get_ratings(949) is None

    assert len(sleeps) == 3
