"""Domain models for content records, listings, and sync runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class PostStatus(str, Enum):
    """Editorial states; only ready records are ever served."""

    DRAFT = "draft"
    PENDING = "pending"
    READY = "ready"


class SyncMode(str, Enum):
    """Reconciliation pass kinds."""

    FULL = "full"
    IMAGES = "images"


class SortOrder(str, Enum):
    """Listing order over the effective publication timestamp."""

    NEWEST = "newest"
    OLDEST = "oldest"


class RenderMode(str, Enum):
    RECORD_MAP = "recordMap"
    BLOCKS = "blocks"


class RecommendationStrategy(str, Enum):
    """Dominant signal present in a selected recommendation set, by priority."""

    RELATED_IDS = "related_ids"
    TAGS = "tags"
    SEGMENT = "segment"
    FEATURED = "featured"
    LATEST = "latest"


@dataclass(slots=True)
class Author:
    name: str
    email: str | None = None
    avatar_url: str | None = None


@dataclass(slots=True)
class ContentRecord:
    """Normalized post as mirrored from the source database.

    ``source_id`` is the external page id and the upsert conflict key. ``post_id`` is the
    stable local id; it is ``None`` for records that were never persisted.
    """

    source_id: str
    title: str
    slug: str
    created_at: datetime
    updated_at: datetime
    summary: str = ""
    author: Author | None = None
    tags: list[str] = field(default_factory=list)
    segment: str | None = None
    status: PostStatus = PostStatus.DRAFT
    published_at: datetime | None = None
    banner_image_url: str | None = None
    read_time_minutes: int | None = None
    featured: bool = False
    related_source_ids: list[str] = field(default_factory=list)
    is_public: bool = False
    source_url: str | None = None
    post_id: str | None = None

    @property
    def effective_timestamp(self) -> datetime:
        return self.published_at or self.created_at


@dataclass(slots=True)
class SyncResult:
    """Counters of one reconciliation pass."""

    synced: int = 0
    skipped: int = 0
    errors: int = 0
    removed: int = 0

    @classmethod
    def aggregate(cls, results: list[SyncResult]) -> SyncResult:
        total = cls()
        for result in results:
            total.synced += result.synced
            total.skipped += result.skipped
            total.errors += result.errors
            total.removed += result.removed
        return total

    def as_dict(self) -> dict[str, int]:
        return {
            "synced": self.synced,
            "skipped": self.skipped,
            "errors": self.errors,
            "removed": self.removed,
        }


@dataclass(slots=True)
class PostListQuery:
    """Filters and paging for ready-post listings. Pages are 1-indexed."""

    page: int = 1
    limit: int = 10
    q: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    authors: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    segments: list[str] = field(default_factory=list)
    featured_only: bool = False
    sort: SortOrder = SortOrder.NEWEST

    @property
    def offset(self) -> int:
        return (max(1, self.page) - 1) * max(1, self.limit)


@dataclass(slots=True)
class FacetOption:
    value: str
    count: int


@dataclass(slots=True)
class PostFacets:
    authors: list[FacetOption] = field(default_factory=list)
    segments: list[FacetOption] = field(default_factory=list)


@dataclass(slots=True)
class PostListResult:
    records: list[ContentRecord]
    total: int
    facets: PostFacets


@dataclass(slots=True)
class SyncRunView:
    """Read model for persisted sync run rows."""

    run_id: int
    mode: SyncMode
    pack_name: str | None
    synced: int
    skipped: int
    errors: int
    removed: int
    created_at: datetime


@dataclass(slots=True)
class RenderableContent:
    """Page content for the frontend renderer.

    Public pages carry the rich ``record_map``; private pages carry the flat ``blocks`` list.
    """

    render_mode: RenderMode
    record_map: dict[str, Any] = field(default_factory=dict)
    blocks: list[dict[str, Any]] | None = None


@dataclass(slots=True)
class RecommendationResult:
    records: list[ContentRecord]
    strategy: RecommendationStrategy
