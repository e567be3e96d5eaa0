"""Content source adapters."""

from blazion.content.sources.base import (
    ContentSource,
    NonRetryableSourceError,
    SchemaMismatchError,
    SourceError,
    TemporarySourceError,
)

__all__ = [
    "ContentSource",
    "NonRetryableSourceError",
    "SchemaMismatchError",
    "SourceError",
    "TemporarySourceError",
]
