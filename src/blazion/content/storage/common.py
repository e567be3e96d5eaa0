"""Common helpers for the content store."""

from __future__ import annotations

import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import create_engine

logger = logging.getLogger(__name__)

PUBLIC_PATH_SEGMENTS = ("/public/", "/.next/", "/dist/", "/coverage/", "/static/")


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


def to_db_datetime(value: datetime) -> datetime:
    """Normalize to naive UTC, the representation stored in SQLite."""

    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def to_utc_aware_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def prepare_db_path(db_path: Path) -> Path:
    """Create the private database directory and warn about public-looking locations."""

    resolved = db_path.expanduser().resolve()
    directory = resolved.parent
    directory.mkdir(parents=True, exist_ok=True, mode=0o700)
    try:
        directory.chmod(0o700)
    except OSError as error:
        logger.warning("Could not enforce secure permissions on %s: %s", directory, error)

    normalized = resolved.as_posix().lower()
    if any(segment in normalized for segment in PUBLIC_PATH_SEGMENTS):
        logger.warning(
            "Database path appears to be inside a public or build directory: %s. "
            "Use a private path such as ./data/blazion.db.",
            resolved,
        )
    return resolved


def build_sqlite_engine(db_path: Path) -> Engine:
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
    event.listen(engine, "connect", _apply_sqlite_pragmas)
    return engine


def connect_sqlite(db_path: Path) -> sqlite3.Connection:
    """Create sqlite connection configured for row access by name."""

    connection = sqlite3.connect(db_path, check_same_thread=False)
    connection.row_factory = sqlite3.Row
    return connection


def _apply_sqlite_pragmas(dbapi_connection: sqlite3.Connection, _: object) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA busy_timeout = 5000")
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.close()
