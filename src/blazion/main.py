"""CLI entrypoint for blazion."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click
import uvicorn

from blazion import __version__
from blazion.api.app import create_app
from blazion.config import Settings
from blazion.content.sources import SourceError
from blazion.controllers import (
    BlazionCliController,
    PackBindCommand,
    SyncRunCommand,
    SyncStatsCommand,
)
from blazion.coordination.state import NoSyncTargetsError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = BlazionCliController()
LOG_LEVELS = ["critical", "error", "warning", "info", "debug"]


@click.group()
@click.version_option(version=__version__, prog_name="blazion")
def blazion() -> None:
    """Blazion: mirror a Notion database into SQLite and serve it as a blog API."""


@blazion.group()
def sync() -> None:
    """Sync commands."""


@sync.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--pack", default=None, help="Only sync this pack.")
def sync_run(db_path: Path | None, pack: str | None) -> None:
    """Run one full sync pass for every sync-active pack."""

    _emit_lines(_guarded(CONTROLLER.run_sync, SyncRunCommand(db_path=db_path, pack=pack)))


@sync.command("images")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--pack", default=None, help="Only refresh this pack.")
def sync_images(db_path: Path | None, pack: str | None) -> None:
    """Refresh signed banner image URLs without re-estimating read time."""

    _emit_lines(_guarded(CONTROLLER.run_images, SyncRunCommand(db_path=db_path, pack=pack)))


@sync.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--recent-runs",
    type=click.IntRange(min=1, max=50),
    default=5,
    show_default=True,
    help="How many recent sync runs to show.",
)
def sync_stats(db_path: Path | None, recent_runs: int) -> None:
    """Show stored post counts, pack bindings, and recent sync runs."""

    _emit_lines(
        CONTROLLER.stats(SyncStatsCommand(db_path=db_path, recent_runs=recent_runs)),
    )


@blazion.group()
def packs() -> None:
    """Content pack commands."""


@packs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def packs_list(db_path: Path | None) -> None:
    """List available packs with their state and bound database."""

    _emit_lines(CONTROLLER.list_packs(db_path))


@packs.command("bind")
@click.argument("pack")
@click.argument("database_id")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def packs_bind(pack: str, database_id: str, db_path: Path | None) -> None:
    """Bind PACK to the Notion database DATABASE_ID."""

    _emit_lines(
        _guarded(
            CONTROLLER.bind_pack,
            PackBindCommand(db_path=db_path, pack=pack, database_id=database_id),
        ),
    )


@blazion.command("serve")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--host", default=None, help="Bind address (default from BLAZION_HOST).")
@click.option("--port", type=click.IntRange(min=1, max=65535), default=None, help="Bind port.")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="info",
    show_default=True,
)
def serve(db_path: Path | None, host: str | None, port: int | None, log_level: str) -> None:
    """Serve the HTTP API with the cron scheduler."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = Settings.from_env(db_path=db_path)
    uvicorn.run(
        create_app(settings),
        host=host or settings.server.host,
        port=port or settings.server.port,
        log_level=log_level.lower(),
    )


def _guarded(handler: Callable[..., list[str]], command: object) -> list[str]:
    try:
        return handler(command)
    except (ValueError, NoSyncTargetsError, SourceError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    blazion()
