"""Blog pack: sync wiring and read endpoints for posts."""

from __future__ import annotations

import logging
import math
import re
from datetime import UTC, datetime, time, timedelta

from fastapi import APIRouter, FastAPI, HTTPException, Query, Response
from fastapi.concurrency import run_in_threadpool

from blazion.api.schemas import (
    AppliedFiltersPayload,
    FacetsPayload,
    PaginationPayload,
    PostCollectionResponse,
    PostListResponse,
    PostPayload,
    PostResponse,
    RecommendationsResponse,
)
from blazion.content.models import ContentRecord, PostListQuery, RenderMode, SortOrder
from blazion.content.ranking import RecommendationWeights, rank_recommendations
from blazion.content.sources.base import SourceError
from blazion.content.sync import SyncService
from blazion.packs.base import PackApiContext, PackDescriptor, PackSyncContext

logger = logging.getLogger(__name__)

PACK_NAME = "blog"
ROUTE_PREFIX = "/api/blog"
SEARCH_INDEX_DEFAULT_LIMIT = 250
SEARCH_INDEX_MAX_LIMIT = 1000
MAX_PAGE_SIZE = 50

LIST_CACHE_CONTROL = "public, max-age=60, stale-while-revalidate=300"
DETAIL_CACHE_CONTROL = "public, max-age=120, stale-while-revalidate=600"

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})


def create_sync_service(context: PackSyncContext) -> SyncService | None:
    if context.source is None or not context.database_id:
        return None
    return SyncService(
        source=context.source,
        repository=context.repository,
        database_id=context.database_id,
        settings=context.settings.sync,
        pack_name=PACK_NAME,
    )


def register_routes(app: FastAPI, context: PackApiContext) -> None:
    app.include_router(build_router(context))


def build_router(context: PackApiContext) -> APIRouter:  # noqa: C901
    router = APIRouter(prefix=ROUTE_PREFIX, tags=[PACK_NAME])
    recommendation = context.settings.recommendation
    weights = RecommendationWeights.from_settings(recommendation)

    def refresh_if_expiring(records: list[ContentRecord]) -> bool:
        if context.sync_service is None:
            return False
        return context.coordinator.refresh_if_expiring(records, pack_name=PACK_NAME)

    def list_posts(query: PostListQuery) -> PostListResponse:
        result = context.repository.list_ready_posts(query)
        if refresh_if_expiring(result.records):
            result = context.repository.list_ready_posts(query)
        total_pages = math.ceil(result.total / query.limit) if result.total else 0
        return PostListResponse(
            data=[PostPayload.from_record(record) for record in result.records],
            pagination=PaginationPayload(
                page=query.page,
                limit=query.limit,
                total=result.total,
                total_pages=total_pages,
            ),
            facets=FacetsPayload.from_facets(result.facets),
            applied_filters=AppliedFiltersPayload(
                q=query.q or "",
                date_from=_iso_or_empty(query.date_from),
                date_to=_iso_or_empty(query.date_to),
                tags=query.tags,
                authors=query.authors,
                segments=query.segments,
                featured_only=query.featured_only,
                sort=query.sort.value,
            ),
        )

    def search_index(limit: int) -> list[ContentRecord]:
        records = context.repository.list_all_ready_posts()
        if refresh_if_expiring(records):
            records = context.repository.list_all_ready_posts()
        return records[:limit]

    def get_post(slug: str) -> ContentRecord | None:
        record = context.repository.get_ready_post_by_slug(slug)
        if record is not None and refresh_if_expiring([record]):
            record = context.repository.get_ready_post_by_slug(slug)
        return record

    def recommend(slug: str, limit: int) -> RecommendationsResponse:
        current = context.repository.get_ready_post_by_slug(slug)
        if current is None:
            raise _not_found(f'Post with slug "{slug}" not found')
        candidates = _without_slug(context.repository.list_all_ready_posts(), slug)
        if refresh_if_expiring(candidates):
            candidates = _without_slug(context.repository.list_all_ready_posts(), slug)
        ranking = rank_recommendations(
            current,
            candidates,
            now=datetime.now(tz=UTC),
            limit=limit,
            weights=weights,
        )
        return RecommendationsResponse(
            data=[PostPayload.from_record(record) for record in ranking.records],
            strategy=ranking.strategy,
        )

    @router.get("/posts", response_model=PostListResponse)
    async def posts(  # noqa: PLR0913
        response: Response,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=10, ge=1, le=MAX_PAGE_SIZE),
        q: str | None = None,
        date_from: str | None = Query(default=None, alias="dateFrom"),
        date_to: str | None = Query(default=None, alias="dateTo"),
        tags: str | None = None,
        author: str | None = None,
        authors: str | None = None,
        segment: str | None = None,
        segments: str | None = None,
        featured: str | None = None,
        sort: SortOrder = SortOrder.NEWEST,
    ) -> PostListResponse:
        query = PostListQuery(
            page=page,
            limit=limit,
            q=(q or "").strip(),
            date_from=normalize_date_boundary(date_from, end=False),
            date_to=normalize_date_boundary(date_to, end=True),
            tags=parse_csv(tags),
            authors=parse_csv(authors if authors is not None else author),
            segments=parse_csv(segments if segments is not None else segment),
            featured_only=(featured or "").strip().lower() in _TRUE_WORDS,
            sort=sort,
        )
        payload = await run_in_threadpool(list_posts, query)
        response.headers["Cache-Control"] = LIST_CACHE_CONTROL
        return payload

    @router.get("/search-index", response_model=PostCollectionResponse)
    async def search_index_route(
        response: Response,
        limit: str | None = None,
    ) -> PostCollectionResponse:
        resolved = parse_limit(limit, SEARCH_INDEX_DEFAULT_LIMIT, SEARCH_INDEX_MAX_LIMIT)
        records = await run_in_threadpool(search_index, resolved)
        response.headers["Cache-Control"] = LIST_CACHE_CONTROL
        return PostCollectionResponse(data=[PostPayload.from_record(record) for record in records])

    @router.get("/posts/{slug}", response_model=PostResponse)
    async def post_detail(slug: str, response: Response) -> PostResponse:
        record = await run_in_threadpool(get_post, slug)
        if record is None:
            raise _not_found(f'Post with slug "{slug}" not found')
        response.headers["Cache-Control"] = DETAIL_CACHE_CONTROL
        return PostResponse(data=PostPayload.from_record(record))

    @router.get("/posts/{slug}/recommendations", response_model=RecommendationsResponse)
    async def recommendations(
        slug: str,
        response: Response,
        limit: str | None = None,
    ) -> RecommendationsResponse:
        resolved = parse_limit(limit, recommendation.default_limit, recommendation.max_limit)
        payload = await run_in_threadpool(recommend, slug, resolved)
        response.headers["Cache-Control"] = LIST_CACHE_CONTROL
        return payload

    @router.get("/posts/{slug}/content")
    async def post_content(slug: str, response: Response) -> dict:
        record = await run_in_threadpool(context.repository.get_ready_post_by_slug, slug)
        if record is None:
            raise _not_found(f'Content for post "{slug}" not found')
        if context.source is None:
            raise HTTPException(
                status_code=503,
                detail={
                    "error": "Not configured",
                    "message": "Set NOTION_API_KEY and bind a database to enable content fetch.",
                },
            )
        try:
            content = await run_in_threadpool(
                context.source.fetch_renderable_content,
                record.source_id,
                is_public=record.is_public,
            )
        except SourceError as error:
            logger.error("Failed to fetch content for %s: %s", slug, error)
            raise HTTPException(
                status_code=502,
                detail={
                    "error": "Content fetch failed",
                    "message": f'Could not fetch content for post "{slug}"',
                },
            ) from error

        if content.render_mode == RenderMode.RECORD_MAP:
            response.headers["Cache-Control"] = DETAIL_CACHE_CONTROL
            return {"recordMap": content.record_map, "renderMode": content.render_mode.value}
        response.headers["Cache-Control"] = LIST_CACHE_CONTROL
        return {
            "recordMap": {},
            "blocks": content.blocks or [],
            "renderMode": content.render_mode.value,
        }

    return router


def parse_csv(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [value.strip() for value in raw.split(",") if value.strip()]


def parse_limit(raw: str | None, default_limit: int, max_limit: int) -> int:
    """Clamp a requested limit to ``[1, max_limit]``; invalid input gets the default."""

    fallback = min(default_limit, max_limit)
    if not raw:
        return fallback
    try:
        parsed = float(raw)
    except ValueError:
        return fallback
    if not math.isfinite(parsed) or parsed <= 0:
        return fallback
    return max(1, min(math.floor(parsed), max_limit))


def normalize_date_boundary(raw: str | None, *, end: bool) -> datetime | None:
    """Date-only values expand to the start or end of the UTC day; garbage is ignored."""

    value = (raw or "").strip()
    if not value:
        return None
    if _DATE_ONLY_RE.match(value):
        try:
            day = datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=UTC)  # noqa: DTZ007
        except ValueError:
            return None
        if end:
            return datetime.combine(day.date(), time.max, tzinfo=UTC) - timedelta(
                microseconds=999,
            )
        return day
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _iso_or_empty(value: datetime | None) -> str:
    if value is None:
        return ""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _without_slug(records: list[ContentRecord], slug: str) -> list[ContentRecord]:
    return [record for record in records if record.slug != slug]


def _not_found(message: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"error": "Not found", "message": message})


BLOG_PACK = PackDescriptor(
    name=PACK_NAME,
    description="Blog schema, sync rules, and content endpoints.",
    route_prefix=ROUTE_PREFIX,
    create_sync_service=create_sync_service,
    register_routes=register_routes,
)
