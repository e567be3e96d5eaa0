"""Pack descriptor contracts shared by all content packs."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from fastapi import FastAPI

from blazion.config import Settings
from blazion.content.repository import SQLiteRepository
from blazion.content.sources.base import ContentSource
from blazion.content.sync import SyncService
from blazion.coordination.state import SyncCoordinator


@dataclass(slots=True)
class PackSyncContext:
    repository: SQLiteRepository
    source: ContentSource | None
    settings: Settings
    database_id: str | None


@dataclass(slots=True)
class PackApiContext:
    repository: SQLiteRepository
    source: ContentSource | None
    sync_service: SyncService | None
    coordinator: SyncCoordinator
    settings: Settings


@dataclass(slots=True, frozen=True)
class PackDescriptor:
    """One content pack: its route prefix, sync wiring, and HTTP routes."""

    name: str
    description: str
    route_prefix: str
    create_sync_service: Callable[[PackSyncContext], SyncService | None]
    register_routes: Callable[[FastAPI, PackApiContext], None]
