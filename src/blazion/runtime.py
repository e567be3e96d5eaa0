"""Process-wide wiring: store, content source, pack bindings, and sync coordinator."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from blazion.config import Settings
from blazion.content.repository import SQLiteRepository
from blazion.content.sources import ContentSource, SourceError
from blazion.content.sources.notion import NotionSource
from blazion.content.sync import SyncService
from blazion.coordination.state import SyncCoordinator
from blazion.packs import (
    PackDescriptor,
    PackSyncContext,
    resolve_registered_packs,
    resolve_unknown_pack_names,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    settings: Settings
    repository: SQLiteRepository
    source: ContentSource | None
    packs: list[PackDescriptor]
    services: dict[str, SyncService]
    coordinator: SyncCoordinator
    _closers: list[Callable[[], None]] = field(default_factory=list)

    @property
    def enabled_pack_names(self) -> list[str]:
        return [pack.name for pack in self.packs]

    @property
    def sync_pack_names(self) -> list[str]:
        return list(self.services)

    def close(self) -> None:
        while self._closers:
            self._closers.pop()()


def build_runtime(
    settings: Settings,
    *,
    repository: SQLiteRepository | None = None,
    source: ContentSource | None = None,
) -> Runtime:
    """Open the store, bind packs to source databases, and build one sync service per bound pack.

    Resources passed in by the caller are not closed by ``Runtime.close``.
    """

    closers: list[Callable[[], None]] = []
    if repository is None:
        repository = SQLiteRepository(settings.db_path)
        closers.append(repository.close)
    repository.init_schema()

    if source is None and settings.notion.configured:
        notion = NotionSource(settings.notion)
        closers.append(notion.close)
        source = notion

    unknown = resolve_unknown_pack_names(settings.packs)
    if unknown:
        logger.warning("Ignoring unknown packs: %s", ", ".join(unknown))
    packs = resolve_registered_packs(settings.packs)

    _persist_env_bindings(settings, repository, packs)

    services: dict[str, SyncService] = {}
    for pack in packs:
        service = _create_service(pack, settings, repository, source)
        if service is None and source is not None and settings.notion.parent_page_id:
            if _bind_compatible_database(pack, settings, repository, source):
                service = _create_service(pack, settings, repository, source)
        if service is not None:
            services[pack.name] = service

    logger.info("Sync-active packs: %s", ", ".join(services) or "none")
    return Runtime(
        settings=settings,
        repository=repository,
        source=source,
        packs=packs,
        services=services,
        coordinator=SyncCoordinator(services, settings.coordination),
        _closers=closers,
    )


def _persist_env_bindings(
    settings: Settings,
    repository: SQLiteRepository,
    packs: list[PackDescriptor],
) -> None:
    # Stored bindings win over environment ids.
    for pack in packs:
        database_id = settings.notion.database_ids.get(pack.name)
        if database_id and repository.get_pack_database_id(pack.name) is None:
            repository.set_pack_database_id(pack.name, database_id)
            logger.info("Bound pack %s to database %s from environment", pack.name, database_id)


def _create_service(
    pack: PackDescriptor,
    settings: Settings,
    repository: SQLiteRepository,
    source: ContentSource | None,
) -> SyncService | None:
    return pack.create_sync_service(
        PackSyncContext(
            repository=repository,
            source=source,
            settings=settings,
            database_id=repository.get_pack_database_id(pack.name),
        ),
    )


def _bind_compatible_database(
    pack: PackDescriptor,
    settings: Settings,
    repository: SQLiteRepository,
    source: ContentSource,
) -> bool:
    try:
        database_id = source.find_compatible_database(settings.notion.parent_page_id)
    except SourceError as error:
        logger.error("Failed to look up a compatible database for pack %s: %s", pack.name, error)
        return False
    if not database_id:
        logger.warning(
            "No compatible database found under page %s for pack %s",
            settings.notion.parent_page_id,
            pack.name,
        )
        return False
    repository.set_pack_database_id(pack.name, database_id)
    logger.info("Bound pack %s to discovered database %s", pack.name, database_id)
    return True
