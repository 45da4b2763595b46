from datetime import datetime, timezone

from app.models import DiscoverFilters, FilterState, PreferenceSet, Title, TitleDetails


def test_title_from_movie_payload():
    title = Title.from_tmdb(
        {
            "id": 603,
            "title": "The Matrix",
            "release_date": "1999-03-31",
            "popularity": 80.5,
            "vote_average": 8.2,
            "vote_count": 25000,
            "genre_ids": [28, 878, 28],
            "poster_path": "/matrix.jpg",
        },
        "movie",
    )

    assert title is not None
    assert title.media_type == "movie"
    assert title.display_name == "The Matrix"
    assert title.year == 1999
    assert title.genre_ids == [28, 878]


def test_title_media_type_comes_from_payload_in_multi_search():
    title = Title.from_tmdb(
        {"id": 1399, "media_type": "tv", "name": "Game of Thrones", "first_air_date": ""}
    )

    assert title is not None
    assert title.media_type == "tv"
    assert title.display_name == "Game of Thrones"
    assert title.release_date is None
    assert title.year is None


def test_people_and_broken_results_are_skipped():
    assert Title.from_tmdb({"id": 1, "media_type": "person", "name": "Someone"}) is None
    assert Title.from_tmdb({"title": "No id"}, "movie") is None


def test_title_details_reads_episode_runtime_for_shows():
    details = TitleDetails.from_tmdb_details(
        {
            "id": 1,
            "name": "Drama",
            "genres": [{"id": 18, "name": "Drama"}],
            "episode_run_time": [52],
            "number_of_seasons": 3,
            "status": "Ended",
        },
        "tv",
    )

    assert details is not None
    assert details.runtime == 52
    assert details.genre_ids == [18]
    assert details.genres[0].name == "Drama"
    assert details.number_of_seasons == 3


def test_preference_set_accepts_legacy_timestamp_key():
    preferences = PreferenceSet.from_document(
        {
            "favorites": [{"id": 5, "media_type": "movie", "display_name": "Five"}],
            "lastUpdated": "2024-05-01T12:00:00+00:00",
        }
    )

    assert [item.id for item in preferences.favorites] == [5]
    assert preferences.watchlist == []
    assert preferences.last_synced_at == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)


def test_synced_fields_excludes_timestamp():
    preferences = PreferenceSet(last_synced_at=datetime.now(timezone.utc))
    assert preferences.synced_fields() == {"favorites": [], "watchlist": [], "lists": []}


def test_discover_filters_emptiness():
    assert DiscoverFilters().is_empty()
    assert DiscoverFilters(page=3).is_empty()
    assert DiscoverFilters(min_rating=0, max_rating=0).is_empty()
    assert not DiscoverFilters(genres=[18]).is_empty()
    assert not DiscoverFilters(sort_by="vote_average.desc").is_empty()
    assert not DiscoverFilters(age_ratings=["PG"]).is_empty()


def test_filter_state_cycles_genres_through_three_states():
    state = FilterState()

    assert state.cycle_genre(18) == "include"
    assert state.cycle_genre(18) == "exclude"
    assert state.cycle_genre(18) is None
    assert state.genre_filters == {}


def test_filter_state_converts_per_media_type():
    state = FilterState()
    state.cycle_genre(18)
    state.cycle_genre(27)
    state.cycle_genre(27)
    state.toggle_age_rating("movie", "R")
    state.toggle_age_rating("tv", "TV-MA")
    state.min_rating = 6

    movie = state.to_discover_filters("movie", page=2)
    tv = state.to_discover_filters("tv")

    assert movie.genres == [18]
    assert movie.exclude_genres == [27]
    assert movie.min_rating == 6
    assert movie.max_rating is None
    assert movie.age_ratings == ["R"]
    assert movie.page == 2
    assert tv.age_ratings == ["TV-MA"]
    assert state.has_active_filters


def test_default_filter_state_maps_to_empty_discover_filters():
    state = FilterState()

    assert not state.has_active_filters
    assert state.to_discover_filters("movie").is_empty()


def test_filter_state_clear_resets_everything():
    state = FilterState(sort_by="title.asc", max_rating=8)
    state.cycle_genre(35)
    state.toggle_age_rating("tv", "TV-14")

    state.clear()

    assert state == FilterState()
