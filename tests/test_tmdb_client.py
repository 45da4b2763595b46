"""Tests for the TMDB metadata client."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from app.config import Settings
from app.models import DiscoverFilters
from app.services.tmdb import ContentGatewayError, TMDBClient


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(**overrides: Any) -> Settings:
    base = {"TMDB_API_KEY": "tmdb-token"}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


def page_payload(results: list[dict[str, Any]], *, page: int = 1, total_pages: int = 1):
    return {
        "page": page,
        "results": results,
        "total_pages": total_pages,
        "total_results": len(results) * total_pages,
    }


@pytest.mark.anyio("asyncio")
async def test_empty_filters_skip_the_network() -> None:
    """An unfiltered discovery returns nothing rather than the whole catalogue."""

    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError(f"unexpected request to {request.url}")

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.test/3") as http_client:
        client = TMDBClient(build_settings(), http_client)
        page = await client.discover("movie", DiscoverFilters())

    assert page.results == []
    assert page.total_results == 0
    assert not page.has_next_page


@pytest.mark.anyio("asyncio")
async def test_discover_sends_filters_and_bearer_token() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json=page_payload(
                [{"id": 1, "title": "Alien", "release_date": "1979-05-25"}],
                total_pages=3,
            ),
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.test/3") as http_client:
        client = TMDBClient(build_settings(), http_client)
        page = await client.discover(
            "movie",
            DiscoverFilters(genres=[27, 878], exclude_genres=[16], min_rating=6, page=2),
        )

    assert len(requests) == 1
    request = requests[0]
    assert request.url.path == "/3/discover/movie"
    assert request.headers["Authorization"] == "Bearer tmdb-token"
    params = request.url.params
    assert params["with_genres"] == "27,878"
    assert params["without_genres"] == "16"
    assert params["vote_average.gte"] == "6.0"
    assert "vote_average.lte" not in params
    assert params["sort_by"] == "popularity.desc"
    assert params["include_adult"] == "false"
    assert params["page"] == "2"
    assert page.results[0].media_type == "movie"
    assert page.has_next_page


@pytest.mark.anyio("asyncio")
async def test_malformed_results_are_skipped_not_fatal(caplog) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=page_payload(
                [
                    {"id": 1, "title": "Alien"},
                    {"id": 2, "title": "Broken count", "vote_count": "n/a"},
                    {"id": 3, "title": "Broken genres", "genre_ids": ["x"]},
                ]
            ),
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.test/3") as http_client:
        client = TMDBClient(build_settings(), http_client)
        page = await client.discover("movie", DiscoverFilters(genres=[27]))

    assert [title.id for title in page.results] == [1]
    assert "Skipping malformed TMDB result" in caplog.text

def test_tv_certifications_become_a_range() -> None:
    client = TMDBClient(build_settings(), httpx.AsyncClient())

    ranged = client.build_discover_params(
        "tv", DiscoverFilters(age_ratings=["TV-MA", "TV-PG"])
    )
    single = client.build_discover_params("tv", DiscoverFilters(age_ratings=["TV-14"]))
    movie = client.build_discover_params(
        "movie", DiscoverFilters(age_ratings=["PG-13", "R"])
    )

    assert ranged["certification_country"] == "US"
    assert ranged["certification.gte"] == "TV-PG"
    assert ranged["certification.lte"] == "TV-MA"
    assert single["certification"] == "TV-14"
    assert movie["certification"] == "PG-13"


@pytest.mark.anyio("asyncio")
async def test_search_drops_people_and_keeps_media_type() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["query"] == "alien"
        return httpx.Response(
            200,
            json=page_payload(
                [
                    {"id": 1, "media_type": "movie", "title": "Alien"},
                    {"id": 2, "media_type": "person", "name": "Sigourney Weaver"},
                    {"id": 3, "media_type": "tv", "name": "Alien: Earth"},
                ]
            ),
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.test/3") as http_client:
        client = TMDBClient(build_settings(), http_client)
        page = await client.search("alien")

    assert [(title.id, title.media_type) for title in page.results] == [
        (1, "movie"),
        (3, "tv"),
    ]


@pytest.mark.anyio("asyncio")
async def test_upcoming_tv_uses_on_the_air() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, json=page_payload([{"id": 9, "name": "Fresh"}]))

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.test/3") as http_client:
        client = TMDBClient(build_settings(), http_client)
        shows = await client.browse("tv", "upcoming")
        await client.trending("movie", "week")

    assert paths == ["/3/tv/on_the_air", "/3/trending/movie/week"]
    assert shows[0].media_type == "tv"


@pytest.mark.anyio("asyncio")
async def test_errors_raise_content_gateway_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="maintenance")

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.test/3") as http_client:
        client = TMDBClient(build_settings(), http_client)
        with pytest.raises(ContentGatewayError) as excinfo:
            await client.details("movie", 1)

    assert excinfo.value.status_code == 503


@pytest.mark.anyio("asyncio")
async def test_watch_providers_grouped_by_region_and_kind() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "id": 1,
                "results": {
                    "US": {
                        "link": "https://example.com",
                        "flatrate": [{"provider_id": 8, "provider_name": "Netflix"}],
                        "ads": [{"provider_id": 300, "provider_name": "Pluto TV"}],
                        "buy": [{"provider_id": 2, "provider_name": "Apple TV"}],
                    }
                },
            },
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.test/3") as http_client:
        client = TMDBClient(build_settings(), http_client)
        regions = await client.watch_providers("movie", 1)

    us = regions["US"]
    assert [item.provider_name for item in us["stream-subscription"]] == ["Netflix"]
    assert us["stream-ads"][0].offer_kind == "stream-ads"
    assert "rent" not in us
    assert us["buy"][0].provider_id == 2


@pytest.mark.anyio("asyncio")
async def test_tv_certification_lookup() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/3/tv/5/content_ratings"
        return httpx.Response(
            200,
            json={
                "results": [
                    {"iso_3166_1": "DE", "rating": "16"},
                    {"iso_3166_1": "US", "rating": "TV-MA"},
                ]
            },
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport, base_url="https://tmdb.test/3") as http_client:
        client = TMDBClient(build_settings(), http_client)
        assert await client.certification("tv", 5) == "TV-MA"


def test_image_urls() -> None:
    assert TMDBClient.build_image_url(None) == ""
    assert TMDBClient.build_image_url("/x.jpg").endswith("/w500/x.jpg")
    assert TMDBClient.build_image_url("https://cdn/x.jpg") == "https://cdn/x.jpg"
