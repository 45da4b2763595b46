"""Entry point for the FastAPI-powered CineMatch service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import settings
from .database import Database
from .models import (
    AISearchResult,
    FilterState,
    MediaType,
    PreferenceSet,
    ProcessedProviders,
    SortKey,
    StreamingOption,
    TabSelection,
    Title,
    TitleDetails,
    TitlePage,
    Trailer,
    TraktRating,
    UserList,
)
from .ranking import (
    format_service_name,
    pick_best_streaming_option,
    pick_trailer,
    refine_tv_shows,
    select_region_providers,
    streaming_options,
)
from .services.ai_search import AISearchService
from .services.document_store import SQLAlchemyDocumentStore
from .services.openrouter import OpenRouterClient
from .services.pagination import MergedView, PaginatedMergeController
from .services.sessions import SessionRegistry, UnknownSessionError, UserSession
from .services.sync import SyncError
from .services.tmdb import BrowseCategory, ContentGatewayError, TMDBClient, TrendingWindow
from .services.trakt import TraktClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


class ProfilePayload(BaseModel):
    email: str | None = None
    display_name: str | None = None


class ListPayload(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: str = ""


class ConnectivityPayload(BaseModel):
    online: bool


class AISearchPayload(BaseModel):
    query: str = Field(min_length=1, max_length=500)


class ProvidersResponse(BaseModel):
    providers: ProcessedProviders
    best_option: StreamingOption | None = None


class TrailerResponse(BaseModel):
    trailer: Trailer | None = None
    videos: list[Trailer] = Field(default_factory=list)


class PreferencesResponse(BaseModel):
    user_id: str
    preferences: PreferenceSet
    pending_operations: int = 0
    online: bool = True


@asynccontextmanager
async def lifespan(_: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    trakt_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.trakt_api_url),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    openrouter_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.openrouter_api_url),
            timeout=httpx.Timeout(60.0, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    tmdb = TMDBClient(settings, tmdb_client)
    trakt = TraktClient(settings, trakt_client)
    openrouter = OpenRouterClient(settings, openrouter_client)
    sessions = SessionRegistry(
        settings, SQLAlchemyDocumentStore(database.session_factory)
    )

    app.state.tmdb = tmdb
    app.state.trakt = trakt
    app.state.ai_search = AISearchService(settings, openrouter, tmdb)
    app.state.sessions = sessions
    app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await sessions.close()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Movie and TV discovery with cloud-synced favorites and lists",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def _require_state(fastapi_app: FastAPI, name: str) -> Any:
    value = getattr(fastapi_app.state, name, None)
    if value is None:
        raise RuntimeError(f"{name} not initialised")
    return value


def register_routes(fastapi_app: FastAPI) -> None:
    def tmdb() -> TMDBClient:
        return _require_state(fastapi_app, "tmdb")

    def sessions() -> SessionRegistry:
        return _require_state(fastapi_app, "sessions")

    def user_session(user_id: str) -> UserSession:
        try:
            return sessions().get(user_id)
        except UnknownSessionError as exc:
            raise HTTPException(
                status_code=404, detail=f"No active session for {user_id}"
            ) from exc

    def preferences_response(session: UserSession) -> PreferencesResponse:
        return PreferencesResponse(
            user_id=session.user_id,
            preferences=session.store.snapshot(),
            pending_operations=session.reconciler.pending_count,
            online=session.reconciler.is_online,
        )

    @fastapi_app.exception_handler(ContentGatewayError)
    async def _content_gateway_error(
        _: Request, exc: ContentGatewayError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=502,
            content={"detail": str(exc), "upstream_status": exc.status_code},
        )

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Catalogue reads
    # ------------------------------------------------------------------

    @fastapi_app.get("/browse/{media_type}/{category}", response_model=list[Title])
    async def browse(
        media_type: MediaType,
        category: BrowseCategory,
        window: TrendingWindow = "day",
    ) -> list[Title]:
        if category == "trending":
            titles = await tmdb().trending(media_type, window)
        else:
            titles = await tmdb().browse(media_type, category)
        if media_type == "tv":
            titles = refine_tv_shows(titles)
        return titles

    @fastapi_app.get("/discover", response_model=MergedView)
    async def discover(
        tab: TabSelection = "all",
        genres: list[int] = Query(default=[]),
        exclude_genres: list[int] = Query(default=[]),
        min_rating: float = Query(default=0.0, ge=0, le=10),
        max_rating: float = Query(default=10.0, ge=0, le=10),
        movie_age_ratings: list[str] = Query(default=[]),
        tv_age_ratings: list[str] = Query(default=[]),
        sort_by: SortKey = "popularity.desc",
        pages: int = Query(default=1, ge=1, le=10),
    ) -> MergedView:
        filters = FilterState(
            genre_filters={
                **{genre: "include" for genre in genres},
                **{genre: "exclude" for genre in exclude_genres},
            },
            min_rating=min_rating,
            max_rating=max_rating,
            movie_age_ratings=movie_age_ratings,
            tv_age_ratings=tv_age_ratings,
            sort_by=sort_by,
        )
        controller = PaginatedMergeController.for_discover(
            tmdb(), filters, tab=tab, sort_by=sort_by
        )
        view = await controller.load()
        for _ in range(pages - 1):
            if not view.has_next_page:
                break
            view = await controller.fetch_next_page()
        return view

    @fastapi_app.get("/search", response_model=TitlePage)
    async def search(query: str = "", page: int = Query(default=1, ge=1)) -> TitlePage:
        if not query.strip():
            return TitlePage.empty()
        return await tmdb().search(query.strip(), page=page)

    @fastapi_app.get("/titles/{media_type}/{title_id}", response_model=TitleDetails)
    async def title_details(media_type: MediaType, title_id: int) -> TitleDetails:
        return await tmdb().details(media_type, title_id)

    @fastapi_app.get(
        "/titles/{media_type}/{title_id}/trailer", response_model=TrailerResponse
    )
    async def title_trailer(media_type: MediaType, title_id: int) -> TrailerResponse:
        videos = await tmdb().videos(media_type, title_id)
        return TrailerResponse(trailer=pick_trailer(videos), videos=videos)

    @fastapi_app.get(
        "/titles/{media_type}/{title_id}/providers", response_model=ProvidersResponse
    )
    async def title_providers(
        media_type: MediaType, title_id: int, region: str | None = None
    ) -> ProvidersResponse:
        resolved_region = (region or settings.default_region).upper()
        results = await tmdb().watch_providers(media_type, title_id)
        providers = select_region_providers(results, resolved_region)
        best = pick_best_streaming_option(streaming_options(providers))
        if best is not None:
            best = best.model_copy(update={"name": format_service_name(best.name)})
        return ProvidersResponse(providers=providers, best_option=best)

    @fastapi_app.get(
        "/titles/{media_type}/{title_id}/ratings", response_model=TraktRating
    )
    async def title_ratings(media_type: MediaType, title_id: int) -> TraktRating:
        trakt: TraktClient = _require_state(fastapi_app, "trakt")
        rating = await trakt.get_ratings(title_id, media_type)
        if rating is None:
            raise HTTPException(status_code=404, detail="No ratings available")
        return rating

    @fastapi_app.post("/ai-search", response_model=AISearchResult)
    async def ai_search(payload: AISearchPayload) -> AISearchResult:
        service: AISearchService = _require_state(fastapi_app, "ai_search")
        try:
            return await service.search(payload.query)
        except RuntimeError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

    # ------------------------------------------------------------------
    # Per-user sessions and preferences
    # ------------------------------------------------------------------

    @fastapi_app.post("/users/{user_id}/session", response_model=PreferencesResponse)
    async def start_session(
        user_id: str, payload: ProfilePayload | None = None
    ) -> PreferencesResponse:
        profile = {
            key: value
            for key, value in (payload.model_dump() if payload else {}).items()
            if value
        }
        try:
            session = await sessions().start(user_id, profile=profile or None)
        except SyncError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return preferences_response(session)

    @fastapi_app.delete("/users/{user_id}/session", status_code=204)
    async def stop_session(user_id: str) -> Response:
        try:
            await sessions().stop(user_id)
        except UnknownSessionError as exc:
            raise HTTPException(
                status_code=404, detail=f"No active session for {user_id}"
            ) from exc
        return Response(status_code=204)

    @fastapi_app.get("/users/{user_id}/preferences", response_model=PreferencesResponse)
    async def get_preferences(user_id: str) -> PreferencesResponse:
        return preferences_response(user_session(user_id))

    @fastapi_app.post("/users/{user_id}/favorites")
    async def toggle_favorite(user_id: str, title: Title) -> dict[str, bool]:
        added = user_session(user_id).store.toggle_favorite(title)
        return {"added": added}

    @fastapi_app.post("/users/{user_id}/watchlist")
    async def toggle_watchlist(user_id: str, title: Title) -> dict[str, bool]:
        added = user_session(user_id).store.toggle_watchlist(title)
        return {"added": added}

    @fastapi_app.post("/users/{user_id}/lists", response_model=UserList, status_code=201)
    async def create_list(user_id: str, payload: ListPayload) -> UserList:
        return user_session(user_id).store.create_list(
            payload.name.strip(), payload.description
        )

    @fastapi_app.delete("/users/{user_id}/lists/{list_id}", status_code=204)
    async def delete_list(user_id: str, list_id: str) -> Response:
        user_session(user_id).store.delete_list(list_id)
        return Response(status_code=204)

    @fastapi_app.post("/users/{user_id}/lists/{list_id}/items", response_model=UserList)
    async def add_list_item(user_id: str, list_id: str, title: Title) -> UserList:
        store = user_session(user_id).store
        store.add_to_list(list_id, title)
        user_list = store.get_list(list_id)
        if user_list is None:
            raise HTTPException(status_code=404, detail=f"Unknown list {list_id}")
        return user_list

    @fastapi_app.delete(
        "/users/{user_id}/lists/{list_id}/items/{item_id}", response_model=UserList
    )
    async def remove_list_item(user_id: str, list_id: str, item_id: int) -> UserList:
        store = user_session(user_id).store
        store.remove_from_list(list_id, item_id)
        user_list = store.get_list(list_id)
        if user_list is None:
            raise HTTPException(status_code=404, detail=f"Unknown list {list_id}")
        return user_list

    @fastapi_app.post("/users/{user_id}/sync", response_model=PreferencesResponse)
    async def sync_now(user_id: str) -> PreferencesResponse:
        session = user_session(user_id)
        try:
            await session.reconciler.sync_all()
            await session.reconciler.force_sync_pending()
        except SyncError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return preferences_response(session)

    @fastapi_app.delete("/users/{user_id}", status_code=204)
    async def delete_account(user_id: str) -> Response:
        session = user_session(user_id)
        try:
            await session.reconciler.delete_account()
        except SyncError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        await sessions().stop(user_id)
        return Response(status_code=204)

    @fastapi_app.put("/connectivity")
    async def set_connectivity(payload: ConnectivityPayload) -> dict[str, bool]:
        registry = sessions()
        registry.connectivity.set_online(payload.online)
        return {"online": registry.connectivity.is_online}


app = create_app()
