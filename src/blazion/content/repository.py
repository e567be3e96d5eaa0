"""SQLModel-backed storage facade for mirrored content."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from sqlalchemy import exists, func, or_, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, delete, select

from blazion.content.models import (
    Author,
    ContentRecord,
    FacetOption,
    PostFacets,
    PostListQuery,
    PostListResult,
    PostStatus,
    SortOrder,
    SyncMode,
    SyncResult,
    SyncRunView,
)
from blazion.content.storage.alembic_runner import upgrade_head
from blazion.content.storage.common import (
    build_sqlite_engine,
    connect_sqlite,
    prepare_db_path,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from blazion.content.storage.sqlmodel_models import PackBinding, Post, SyncRun

logger = logging.getLogger(__name__)


class SQLiteRepository:
    """Facade that persists posts, sync runs, and pack bindings using SQLModel and Alembic."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = prepare_db_path(db_path)
        self.engine = build_sqlite_engine(self.db_path)

        # Keep low-level connection for tests and ad-hoc debugging queries.
        self._connection = connect_sqlite(self.db_path)

    def close(self) -> None:
        self._connection.close()
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)
        try:
            self.db_path.chmod(0o600)
        except OSError as error:
            logger.warning("Could not enforce secure permissions on %s: %s", self.db_path, error)

    def is_connected(self) -> bool:
        try:
            with self.engine.connect() as connection:
                return connection.execute(text("SELECT 1")).scalar_one() == 1
        except SQLAlchemyError:
            logger.warning("Content store connectivity check failed", exc_info=True)
            return False

    def upsert_post(self, record: ContentRecord) -> str:
        """Insert or update by ``source_id``; a null read time keeps the stored value.

        When a concurrent pass inserts the same ``source_id`` first, the losing insert is
        retried as an update.
        """

        while True:
            read_time_minutes = record.read_time_minutes
            with Session(self.engine) as session:
                existing = session.exec(
                    select(Post).where(Post.source_id == record.source_id),
                ).one_or_none()
                inserting = existing is None
                if existing is None:
                    existing = Post(
                        post_id=record.post_id or str(uuid4()),
                        source_id=record.source_id,
                        title=record.title,
                        slug=record.slug,
                        status=record.status.value,
                        created_at=to_db_datetime(record.created_at),
                        updated_at=to_db_datetime(record.updated_at),
                    )
                elif read_time_minutes is None:
                    read_time_minutes = existing.read_time_minutes

                _apply_record(existing, record)
                existing.read_time_minutes = read_time_minutes
                session.add(existing)
                try:
                    session.commit()
                    return existing.post_id
                except IntegrityError:
                    session.rollback()
                    if not inserting:
                        raise
                    winner = session.exec(
                        select(Post.post_id).where(Post.source_id == record.source_id),
                    ).one_or_none()
                    if winner is None:
                        raise
                    logger.debug("Post %s was inserted concurrently, updating", record.source_id)

    def list_ready_posts(self, query: PostListQuery) -> PostListResult:
        conditions = _ready_conditions(query)
        with Session(self.engine) as session:
            total = session.exec(
                select(func.count()).select_from(Post).where(*conditions),
            ).one()

            effective = func.coalesce(Post.published_at, Post.created_at)
            if query.sort == SortOrder.OLDEST:
                order = (effective.asc(), col(Post.created_at).asc())
            else:
                order = (effective.desc(), col(Post.created_at).desc())
            rows = session.exec(
                select(Post)
                .where(*conditions)
                .order_by(*order)
                .offset(query.offset)
                .limit(max(1, query.limit)),
            ).all()
            facet_rows = session.exec(
                select(Post.author_name, Post.segment).where(
                    Post.status == PostStatus.READY.value,
                ),
            ).all()

        return PostListResult(
            records=[_to_record(row) for row in rows],
            total=int(total),
            facets=PostFacets(
                authors=build_facet_options(author for author, _ in facet_rows),
                segments=build_facet_options(segment for _, segment in facet_rows),
            ),
        )

    def get_ready_post_by_slug(self, slug: str) -> ContentRecord | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(Post).where(
                    Post.slug == slug,
                    Post.status == PostStatus.READY.value,
                ),
            ).first()
            if row is None:
                return None
            return _to_record(row)

    def list_all_ready_posts(self, limit: int | None = None) -> list[ContentRecord]:
        effective = func.coalesce(Post.published_at, Post.created_at)
        statement = (
            select(Post)
            .where(Post.status == PostStatus.READY.value)
            .order_by(effective.desc(), col(Post.created_at).desc())
        )
        if limit is not None:
            statement = statement.limit(limit)
        with Session(self.engine) as session:
            return [_to_record(row) for row in session.exec(statement).all()]

    def count_posts(self) -> int:
        with Session(self.engine) as session:
            return int(session.exec(select(func.count()).select_from(Post)).one())

    def delete_posts_not_in(self, source_ids: Iterable[str]) -> int:
        """Delete every post whose source id is absent; an empty set deletes all posts."""

        keep = sorted(set(source_ids))
        statement = delete(Post)
        if keep:
            statement = statement.where(col(Post.source_id).not_in(keep))
        with Session(self.engine) as session:
            result = session.exec(statement)
            session.commit()
            return int(result.rowcount or 0)

    def record_sync_run(
        self,
        result: SyncResult,
        *,
        mode: SyncMode = SyncMode.FULL,
        pack_name: str | None = None,
    ) -> int:
        with Session(self.engine) as session:
            row = SyncRun(
                mode=mode.value,
                pack_name=pack_name,
                synced=result.synced,
                skipped=result.skipped,
                errors=result.errors,
                removed=result.removed,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return int(row.run_id or 0)

    def list_recent_sync_runs(self, limit: int = 10) -> list[SyncRunView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(SyncRun)
                .order_by(col(SyncRun.created_at).desc(), col(SyncRun.run_id).desc())
                .limit(limit),
            ).all()
        return [
            SyncRunView(
                run_id=int(row.run_id or 0),
                mode=SyncMode(row.mode),
                pack_name=row.pack_name,
                synced=row.synced,
                skipped=row.skipped,
                errors=row.errors,
                removed=row.removed,
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in rows
        ]

    def set_pack_database_id(self, pack_name: str, database_id: str) -> None:
        with Session(self.engine) as session:
            binding = session.get(PackBinding, pack_name)
            if binding is None:
                binding = PackBinding(
                    pack_name=pack_name,
                    database_id=database_id,
                    updated_at=to_db_datetime(utc_now()),
                )
            else:
                binding.database_id = database_id
                binding.updated_at = to_db_datetime(utc_now())
            session.add(binding)
            session.commit()

    def get_pack_database_id(self, pack_name: str) -> str | None:
        with Session(self.engine) as session:
            binding = session.get(PackBinding, pack_name)
            return binding.database_id if binding is not None else None

    def list_pack_bindings(self) -> dict[str, str]:
        with Session(self.engine) as session:
            rows = session.exec(select(PackBinding).order_by(col(PackBinding.pack_name))).all()
            return {row.pack_name: row.database_id for row in rows}


def build_facet_options(values: Iterable[str | None]) -> list[FacetOption]:
    """Count values case-insensitively; the first-seen casing is displayed."""

    options: dict[str, FacetOption] = {}
    for raw in values:
        value = (raw or "").strip()
        if not value:
            continue
        key = value.lower()
        option = options.get(key)
        if option is None:
            options[key] = FacetOption(value=value, count=1)
        else:
            option.count += 1
    return sorted(options.values(), key=lambda option: (-option.count, option.value))


def _ready_conditions(query: PostListQuery) -> list:
    conditions: list = [Post.status == PostStatus.READY.value]
    effective = func.coalesce(Post.published_at, Post.created_at)

    needle = (query.q or "").strip().lower()
    if needle:
        conditions.append(
            or_(
                func.lower(Post.title).contains(needle, autoescape=True),
                func.lower(Post.summary).contains(needle, autoescape=True),
            ),
        )
    if query.date_from is not None:
        conditions.append(effective >= to_db_datetime(query.date_from))
    if query.date_to is not None:
        conditions.append(effective <= to_db_datetime(query.date_to))
    if query.authors:
        authors = [author.lower() for author in query.authors]
        conditions.append(func.lower(func.coalesce(Post.author_name, "")).in_(authors))
    if query.tags:
        tags = [tag.lower() for tag in query.tags]
        tag_values = func.json_each(Post.tags_json).table_valued("value")
        conditions.append(
            exists(
                select(1).select_from(tag_values).where(func.lower(tag_values.c.value).in_(tags)),
            ),
        )
    if query.segments:
        segments = [segment.lower() for segment in query.segments]
        conditions.append(func.lower(func.coalesce(Post.segment, "")).in_(segments))
    if query.featured_only:
        conditions.append(col(Post.featured).is_(True))
    return conditions


def _apply_record(row: Post, record: ContentRecord) -> None:
    author = record.author
    row.source_id = record.source_id
    row.title = record.title
    row.slug = record.slug
    row.summary = record.summary
    row.author_name = author.name if author else None
    row.author_email = author.email if author else None
    row.author_avatar_url = author.avatar_url if author else None
    row.tags_json = json.dumps(record.tags, ensure_ascii=False)
    row.segment = record.segment
    row.status = record.status.value
    row.published_at = to_db_datetime(record.published_at) if record.published_at else None
    row.banner_image_url = record.banner_image_url
    row.read_time_minutes = record.read_time_minutes
    row.featured = record.featured
    row.related_source_ids_json = json.dumps(record.related_source_ids)
    row.is_public = record.is_public
    row.source_url = record.source_url
    row.created_at = to_db_datetime(record.created_at)
    row.updated_at = to_db_datetime(record.updated_at)


def _to_record(row: Post) -> ContentRecord:
    author = None
    if row.author_name:
        author = Author(
            name=row.author_name,
            email=row.author_email,
            avatar_url=row.author_avatar_url,
        )
    return ContentRecord(
        post_id=row.post_id,
        source_id=row.source_id,
        title=row.title,
        slug=row.slug,
        summary=row.summary or "",
        author=author,
        tags=_load_string_list(row.tags_json),
        segment=row.segment,
        status=PostStatus(row.status),
        published_at=_aware_or_none(row.published_at),
        banner_image_url=row.banner_image_url,
        read_time_minutes=row.read_time_minutes,
        featured=bool(row.featured),
        related_source_ids=_load_string_list(row.related_source_ids_json),
        is_public=bool(row.is_public),
        source_url=row.source_url,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _aware_or_none(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return to_utc_aware_datetime(value)


def _load_string_list(raw: str | None) -> list[str]:
    try:
        parsed = json.loads(raw or "[]")
    except ValueError:
        return []
    if not isinstance(parsed, list):
        return []
    return [item for item in parsed if isinstance(item, str)]
