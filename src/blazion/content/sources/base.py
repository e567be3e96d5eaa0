"""Common content source contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from blazion.content.models import ContentRecord, RenderableContent


@dataclass(slots=True)
class SourceError(Exception):
    """Base source fetch error."""

    message: str
    code: str = "source_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class TemporarySourceError(SourceError):
    """Retryable source error (rate limiting, 5xx, transport failure)."""

    status_code: int | None = None
    retry_after: int | None = None


@dataclass(slots=True)
class NonRetryableSourceError(SourceError):
    """Source error that must fail the pass on first occurrence."""

    status_code: int | None = None


@dataclass(slots=True)
class SchemaMismatchError(NonRetryableSourceError):
    """Bound database does not expose the minimum property shape."""

    problems: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        if not self.problems:
            return self.message
        return f"{self.message}: {'; '.join(self.problems)}"


class ContentSource(Protocol):
    """Interface for external content databases."""

    def fetch_all(self, database_id: str) -> list[ContentRecord]:
        """Fetch every decodable record of a database, in source order."""
        raise NotImplementedError

    def estimate_read_time(self, record_id: str, *, is_public: bool) -> int | None:
        """Estimate read time in minutes; None when no words can be extracted."""
        raise NotImplementedError

    def fetch_renderable_content(self, record_id: str, *, is_public: bool) -> RenderableContent:
        """Load content in the shape the frontend renderer expects."""
        raise NotImplementedError

    def assert_minimum_schema(self, database_id: str) -> None:
        """Raise SchemaMismatchError when the database lacks required properties."""
        raise NotImplementedError

    def find_compatible_database(self, parent_page_id: str) -> str | None:
        """Return the id of a child database under ``parent_page_id`` that passes the schema check."""
        raise NotImplementedError
