"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

import pytest

from blazion.content.models import (
    Author,
    ContentRecord,
    PostStatus,
    RenderableContent,
    RenderMode,
)
from blazion.content.repository import SQLiteRepository

BASE_TIME = datetime(2026, 1, 10, 12, 0, tzinfo=UTC)


def make_record(**overrides) -> ContentRecord:
    values = {
        "source_id": "page-1",
        "title": "First post",
        "slug": "first-post",
        "summary": "Intro text",
        "author": Author(name="Ada", email="ada@example.com"),
        "tags": ["python"],
        "segment": "engineering",
        "status": PostStatus.READY,
        "published_at": BASE_TIME,
        "is_public": True,
        "created_at": BASE_TIME,
        "updated_at": BASE_TIME,
    }
    values.update(overrides)
    return ContentRecord(**values)


@dataclass
class FakeSource:
    """In-memory content source that records calls."""

    records: list[ContentRecord] = field(default_factory=list)
    read_time: int | None = 4
    schema_error: Exception | None = None
    fetch_error: Exception | None = None
    read_time_errors: dict[str, Exception] = field(default_factory=dict)
    content_error: Exception | None = None
    compatible_database_id: str | None = None
    calls: list[str] = field(default_factory=list)
    before_fetch: Callable[[], None] | None = None

    def fetch_all(self, database_id: str) -> list[ContentRecord]:
        self.calls.append(f"fetch_all:{database_id}")
        if self.before_fetch is not None:
            self.before_fetch()
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.records)

    def estimate_read_time(self, record_id: str, *, is_public: bool) -> int | None:
        self.calls.append(f"estimate_read_time:{record_id}:{is_public}")
        error = self.read_time_errors.get(record_id)
        if error is not None:
            raise error
        return self.read_time

    def fetch_renderable_content(self, record_id: str, *, is_public: bool) -> RenderableContent:
        self.calls.append(f"fetch_renderable_content:{record_id}")
        if self.content_error is not None:
            raise self.content_error
        if is_public:
            return RenderableContent(
                render_mode=RenderMode.RECORD_MAP,
                record_map={"block": {record_id: {"value": {"id": record_id}}}},
            )
        return RenderableContent(
            render_mode=RenderMode.BLOCKS,
            blocks=[{"type": "paragraph", "id": "b1"}],
        )

    def assert_minimum_schema(self, database_id: str) -> None:
        self.calls.append(f"assert_minimum_schema:{database_id}")
        if self.schema_error is not None:
            raise self.schema_error

    def find_compatible_database(self, parent_page_id: str) -> str | None:
        self.calls.append(f"find_compatible_database:{parent_page_id}")
        return self.compatible_database_id


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[SQLiteRepository]:
    repo = SQLiteRepository(tmp_path / "data" / "blazion.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def fake_source() -> FakeSource:
    return FakeSource()
