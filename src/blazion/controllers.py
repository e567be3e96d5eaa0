"""Controllers for CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from blazion.config import Settings
from blazion.content.models import SyncResult
from blazion.content.repository import SQLiteRepository
from blazion.coordination.state import SyncTrigger
from blazion.packs import AVAILABLE_PACKS
from blazion.runtime import Runtime, build_runtime


@dataclass(slots=True)
class SyncRunCommand:
    """CLI inputs for full sync and image refresh commands."""

    db_path: Path | None
    pack: str | None


@dataclass(slots=True)
class SyncStatsCommand:
    """CLI inputs for sync stats command."""

    db_path: Path | None
    recent_runs: int


@dataclass(slots=True)
class PackBindCommand:
    """CLI inputs for pack bind command."""

    db_path: Path | None
    pack: str
    database_id: str


class BlazionCliController:
    """Coordinates CLI command execution."""

    def run_sync(self, command: SyncRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_sync()
        with _runtime(settings) as runtime:
            outcome = runtime.coordinator.run_sync(SyncTrigger.MANUAL, command.pack)
            pack_results = dict(runtime.coordinator.status().sync.pack_results)
        return [
            f"Sync completed: {_format_result(outcome.result or SyncResult())}",
            *_format_pack_results(pack_results),
        ]

    def run_images(self, command: SyncRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_sync()
        with _runtime(settings) as runtime:
            outcome = runtime.coordinator.run_image_refresh(SyncTrigger.MANUAL, command.pack)
            pack_results = dict(runtime.coordinator.status().image_refresh.pack_results)
        return [
            f"Image URL refresh completed: {_format_result(outcome.result or SyncResult())}",
            *_format_pack_results(pack_results),
        ]

    def stats(self, command: SyncStatsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            total_posts = repository.count_posts()
            ready_posts = len(repository.list_all_ready_posts())
            bindings = repository.list_pack_bindings()
            runs = repository.list_recent_sync_runs(limit=command.recent_runs)

        lines = [
            f"Posts: total={total_posts} ready={ready_posts}",
            f"Pack bindings: {_format_bindings(bindings)}",
        ]
        if not runs:
            lines.append("Recent sync runs: none")
            return lines
        lines.append("Recent sync runs:")
        for run in runs:
            lines.append(
                f"- #{run.run_id} {run.created_at.isoformat()} mode={run.mode.value} "
                f"pack={run.pack_name or '-'} synced={run.synced} skipped={run.skipped} "
                f"errors={run.errors} removed={run.removed}",
            )
        return lines

    def list_packs(self, db_path: Path | None) -> list[str]:
        settings = Settings.from_env(db_path=db_path)
        with _repository(settings) as repository:
            bindings = repository.list_pack_bindings()

        enabled = set(settings.packs)
        lines = []
        for pack in AVAILABLE_PACKS:
            state = "enabled" if pack.name in enabled else "disabled"
            database_id = bindings.get(pack.name) or settings.notion.database_ids.get(pack.name)
            lines.append(
                f"{pack.name} ({state}) prefix={pack.route_prefix} "
                f"database={database_id or '-'}: {pack.description}",
            )
        return lines

    def bind_pack(self, command: PackBindCommand) -> list[str]:
        known = {pack.name for pack in AVAILABLE_PACKS}
        if command.pack not in known:
            raise ValueError(
                f"Unknown pack {command.pack!r}. Available: {', '.join(sorted(known))}.",
            )
        database_id = command.database_id.strip()
        if not database_id:
            raise ValueError("Database id must not be empty.")

        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            repository.set_pack_database_id(command.pack, database_id)
        return [f"Pack {command.pack} bound to database {database_id}."]


def _format_result(result: SyncResult) -> str:
    return (
        f"synced={result.synced} skipped={result.skipped} "
        f"errors={result.errors} removed={result.removed}"
    )


def _format_pack_results(pack_results: dict[str, SyncResult]) -> list[str]:
    return [f"- {name}: {_format_result(result)}" for name, result in pack_results.items()]


def _format_bindings(bindings: dict[str, str]) -> str:
    if not bindings:
        return "none"
    return ", ".join(f"{name}={database_id}" for name, database_id in bindings.items())


@contextmanager
def _repository(settings: Settings) -> Iterator[SQLiteRepository]:
    repository = SQLiteRepository(settings.db_path)
    try:
        repository.init_schema()
        yield repository
    finally:
        repository.close()


@contextmanager
def _runtime(settings: Settings) -> Iterator[Runtime]:
    runtime = build_runtime(settings)
    try:
        yield runtime
    finally:
        runtime.close()
