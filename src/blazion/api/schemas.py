"""HTTP payload models; field names are serialized in camelCase."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from blazion.content.models import (
    ContentRecord,
    FacetOption,
    PostFacets,
    RecommendationStrategy,
    SyncResult,
)
from blazion.coordination.state import CoordinatorStatus, PassState, to_iso


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PostPayload(ApiModel):
    id: str
    source_id: str
    title: str
    slug: str
    summary: str | None
    author: str | None
    author_email: str | None
    author_avatar_url: str | None
    tags: list[str]
    segment: str | None
    status: str
    published_at: datetime | None
    banner_image_url: str | None
    read_time_minutes: int | None
    featured: bool
    related_post_ids: list[str]
    is_public: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: ContentRecord) -> PostPayload:
        author = record.author
        return cls(
            id=record.post_id or record.source_id,
            source_id=record.source_id,
            title=record.title,
            slug=record.slug,
            summary=record.summary or None,
            author=author.name if author else None,
            author_email=author.email if author else None,
            author_avatar_url=author.avatar_url if author else None,
            tags=record.tags,
            segment=record.segment,
            status=record.status.value,
            published_at=record.published_at,
            banner_image_url=record.banner_image_url,
            read_time_minutes=record.read_time_minutes,
            featured=record.featured,
            related_post_ids=record.related_source_ids,
            is_public=record.is_public,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class FacetOptionPayload(ApiModel):
    value: str
    count: int


class FacetsPayload(ApiModel):
    authors: list[FacetOptionPayload]
    segments: list[FacetOptionPayload]

    @classmethod
    def from_facets(cls, facets: PostFacets) -> FacetsPayload:
        return cls(
            authors=[_facet(option) for option in facets.authors],
            segments=[_facet(option) for option in facets.segments],
        )


class PaginationPayload(ApiModel):
    page: int
    limit: int
    total: int
    total_pages: int


class AppliedFiltersPayload(ApiModel):
    q: str
    date_from: str
    date_to: str
    tags: list[str]
    authors: list[str]
    segments: list[str]
    featured_only: bool
    sort: str


class PostListResponse(ApiModel):
    data: list[PostPayload]
    pagination: PaginationPayload
    facets: FacetsPayload
    applied_filters: AppliedFiltersPayload


class PostResponse(ApiModel):
    data: PostPayload


class PostCollectionResponse(ApiModel):
    data: list[PostPayload]


class RecommendationsResponse(ApiModel):
    data: list[PostPayload]
    strategy: RecommendationStrategy


class SyncResultPayload(ApiModel):
    synced: int
    skipped: int
    errors: int
    removed: int

    @classmethod
    def from_result(cls, result: SyncResult | None) -> SyncResultPayload | None:
        if result is None:
            return None
        return cls(**result.as_dict())


class HealthResponse(ApiModel):
    status: str
    database: str
    notion_configured: bool
    enabled_packs: list[str]
    sync_enabled_packs: list[str]
    timestamp: datetime


class SyncStatusResponse(ApiModel):
    status: str
    last_sync_started_at: str | None
    last_sync_finished_at: str | None
    last_sync_source: str
    last_sync_result: SyncResultPayload | None
    last_sync_pack_results: dict[str, SyncResultPayload]
    last_sync_error: str | None
    image_refresh_in_progress: bool
    last_image_refresh_started_at: str | None
    last_image_refresh_finished_at: str | None
    last_image_refresh_source: str
    last_image_refresh_result: SyncResultPayload | None
    last_image_refresh_pack_results: dict[str, SyncResultPayload]
    last_image_refresh_error: str | None
    image_url_refresh_buffer_seconds: int
    image_url_refresh_cooldown_seconds: int
    sync_hint_enabled: bool
    enabled_packs: list[str]
    sync_enabled_packs: list[str]
    next_hint_allowed_at: str | None
    hint_cooldown_remaining_ms: int

    @classmethod
    def from_status(
        cls,
        status: CoordinatorStatus,
        *,
        enabled_packs: list[str],
    ) -> SyncStatusResponse:
        sync = status.sync
        images = status.image_refresh
        return cls(
            status="in_progress" if sync.in_progress else "idle",
            last_sync_started_at=to_iso(sync.started_at_ms),
            last_sync_finished_at=to_iso(sync.finished_at_ms),
            last_sync_source=_source_label(sync),
            last_sync_result=SyncResultPayload.from_result(sync.result),
            last_sync_pack_results=_pack_results(sync),
            last_sync_error=sync.error,
            image_refresh_in_progress=images.in_progress,
            last_image_refresh_started_at=to_iso(images.started_at_ms),
            last_image_refresh_finished_at=to_iso(images.finished_at_ms),
            last_image_refresh_source=_source_label(images),
            last_image_refresh_result=SyncResultPayload.from_result(images.result),
            last_image_refresh_pack_results=_pack_results(images),
            last_image_refresh_error=images.error,
            image_url_refresh_buffer_seconds=status.image_url_refresh_buffer_seconds,
            image_url_refresh_cooldown_seconds=status.image_url_refresh_cooldown_seconds,
            sync_hint_enabled=status.hint_enabled,
            enabled_packs=enabled_packs,
            sync_enabled_packs=status.sync_active_packs,
            next_hint_allowed_at=to_iso(status.next_hint_allowed_at_ms),
            hint_cooldown_remaining_ms=status.hint_cooldown_remaining_ms,
        )


def _facet(option: FacetOption) -> FacetOptionPayload:
    return FacetOptionPayload(value=option.value, count=option.count)


def _source_label(state: PassState) -> str:
    return state.source.value


def _pack_results(state: PassState) -> dict[str, SyncResultPayload]:
    return {name: SyncResultPayload(**result.as_dict()) for name, result in state.pack_results.items()}
