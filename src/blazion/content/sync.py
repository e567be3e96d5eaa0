"""Reconciliation pass: mirror one source database into the local store."""

from __future__ import annotations

import logging
from dataclasses import replace

from blazion.config import SyncSettings
from blazion.content.models import PostStatus, SyncMode, SyncResult
from blazion.content.repository import SQLiteRepository
from blazion.content.sources.base import ContentSource

logger = logging.getLogger(__name__)


class SyncService:
    """Runs full sync and image-URL refresh passes for one bound database.

    Schema and fetch failures abort the pass before anything is written. Failures on a
    single record are logged, counted as errors, and the pass continues.
    """

    def __init__(
        self,
        *,
        source: ContentSource,
        repository: SQLiteRepository,
        database_id: str,
        settings: SyncSettings,
        pack_name: str | None = None,
    ) -> None:
        self.source = source
        self.repository = repository
        self.database_id = database_id
        self.settings = settings
        self.pack_name = pack_name

    def sync_now(self) -> SyncResult:
        return self._perform(refresh_only=False)

    def refresh_image_urls(self) -> SyncResult:
        """Re-fetch records to renew signed banner URLs without re-estimating read time."""

        return self._perform(refresh_only=True)

    def _perform(self, *, refresh_only: bool) -> SyncResult:
        mode = SyncMode.IMAGES if refresh_only else SyncMode.FULL
        logger.info(
            "Starting %s sync pass (pack=%s database=%s)",
            mode.value,
            self.pack_name,
            self.database_id,
        )
        self.source.assert_minimum_schema(self.database_id)
        records = self.source.fetch_all(self.database_id)

        result = SyncResult()
        desired_source_ids: set[str] = set()
        for record in records:
            if record.status != PostStatus.READY:
                result.skipped += 1
                continue
            if self.settings.public_only and not record.is_public:
                result.skipped += 1
                continue

            desired_source_ids.add(record.source_id)
            if refresh_only and not record.banner_image_url:
                result.skipped += 1
                continue

            try:
                read_time_minutes = record.read_time_minutes
                if not refresh_only:
                    read_time_minutes = self.source.estimate_read_time(
                        record.source_id,
                        is_public=record.is_public,
                    )
                self.repository.upsert_post(replace(record, read_time_minutes=read_time_minutes))
                result.synced += 1
            except Exception:  # noqa: BLE001
                logger.exception("Failed to sync post %s (%s)", record.slug, record.source_id)
                result.errors += 1

        result.removed = self._remove_stale(records_fetched=len(records), keep=desired_source_ids)
        self.repository.record_sync_run(result, mode=mode, pack_name=self.pack_name)
        logger.info(
            "Finished %s sync pass (pack=%s): synced=%s skipped=%s errors=%s removed=%s",
            mode.value,
            self.pack_name,
            result.synced,
            result.skipped,
            result.errors,
            result.removed,
        )
        return result

    def _remove_stale(self, *, records_fetched: int, keep: set[str]) -> int:
        # An empty upstream listing wipes the store only when explicitly allowed.
        if records_fetched == 0 and not self.settings.allow_empty_source_wipe:
            existing = self.repository.count_posts()
            if existing > 0:
                logger.warning(
                    "Source database %s returned no records; keeping %s stored posts",
                    self.database_id,
                    existing,
                )
                return 0
        return self.repository.delete_posts_not_in(keep)
