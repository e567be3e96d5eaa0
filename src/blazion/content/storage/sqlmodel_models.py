"""SQLModel ORM tables for the content store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class Post(SQLModel, table=True):
    __tablename__ = "posts"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("source_id", name="uq_posts_source_id"),
        UniqueConstraint("slug", name="uq_posts_slug"),
        Index("ix_posts_status", "status"),
    )

    post_id: str = Field(primary_key=True)
    source_id: str
    title: str
    slug: str
    summary: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    author_name: str | None = None
    author_email: str | None = None
    author_avatar_url: str | None = None
    tags_json: str = Field(default="[]", sa_column=Column(Text, nullable=False, server_default="[]"))
    segment: str | None = None
    status: str
    published_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    banner_image_url: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    read_time_minutes: int | None = None
    featured: bool = False
    related_source_ids_json: str = Field(
        default="[]",
        sa_column=Column(Text, nullable=False, server_default="[]"),
    )
    is_public: bool = False
    source_url: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class SyncRun(SQLModel, table=True):
    __tablename__ = "sync_runs"  # type: ignore[bad-override]

    run_id: int | None = Field(default=None, primary_key=True)
    mode: str = Field(default="full", index=True)
    pack_name: str | None = Field(default=None, index=True)
    synced: int = 0
    skipped: int = 0
    errors: int = 0
    removed: int = 0
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class PackBinding(SQLModel, table=True):
    __tablename__ = "pack_bindings"  # type: ignore[bad-override]

    pack_name: str = Field(primary_key=True)
    database_id: str
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
