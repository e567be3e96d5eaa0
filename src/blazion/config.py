"""Runtime configuration for sync, coordination, ranking, and the HTTP server."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_NOTION_API_BASE_URL = "https://api.notion.com/v1"
DEFAULT_NOTION_PUBLIC_API_BASE_URL = "https://www.notion.so/api/v3"
DEFAULT_NOTION_API_VERSION = "2022-06-28"
PRODUCTION_ENVIRONMENTS = frozenset({"production", "prod"})


@dataclass(slots=True)
class NotionSettings:
    """Content source connection settings."""

    api_key: str = ""
    database_ids: dict[str, str] = field(default_factory=dict)
    parent_page_id: str = ""
    api_base_url: str = DEFAULT_NOTION_API_BASE_URL
    public_api_base_url: str = DEFAULT_NOTION_PUBLIC_API_BASE_URL
    api_version: str = DEFAULT_NOTION_API_VERSION
    request_timeout_seconds: float = 30.0
    page_size: int = 100
    max_attempts: int = 4
    retry_base_delay_seconds: float = 0.3
    retry_max_delay_seconds: float = 4.0

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


@dataclass(slots=True)
class SyncSettings:
    """Reconciliation pass and scheduling settings."""

    public_only: bool = True
    sync_cron: str = "*/30 * * * *"
    image_refresh_cron: str = "0 * * * *"
    scheduler_enabled: bool = True
    allow_empty_source_wipe: bool = False


@dataclass(slots=True)
class CoordinationSettings:
    """Single-flight, cooldown, and hint rate limiting settings."""

    image_url_refresh_buffer_seconds: int = 300
    image_url_refresh_cooldown_seconds: int = 60
    hint_enabled: bool = True
    hint_cooldown_seconds: int = 60
    ip_minute_limit: int = 1
    ip_hour_limit: int = 5
    session_minute_limit: int = 1
    counter_eviction_threshold: int = 2_000


@dataclass(slots=True)
class RecommendationSettings:
    """Related content ranking weights and limits."""

    default_limit: int = 3
    max_limit: int = 6
    weight_related: float = 100
    weight_tag: float = 20
    weight_segment: float = 12
    weight_featured: float = 8
    weight_recency: float = 6
    recency_window_days: float = 30


@dataclass(slots=True)
class ServerSettings:
    """HTTP server, auth, and per-route rate limit settings."""

    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3000
    cors_origins: tuple[str, ...] = ()
    admin_api_key: str = ""
    admin_api_key_enabled: bool = False
    rate_limit_enabled: bool = True
    rate_limit_window_seconds: int = 60
    rate_limit_default: int = 60
    rate_limit_posts: int = 120
    rate_limit_content: int = 30
    rate_limit_sync: int = 2


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path("data/blazion.db")
    environment: str = "development"
    packs: tuple[str, ...] = ("blog",)
    notion: NotionSettings = field(default_factory=NotionSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    coordination: CoordinationSettings = field(default_factory=CoordinationSettings)
    recommendation: RecommendationSettings = field(default_factory=RecommendationSettings)
    server: ServerSettings = field(default_factory=ServerSettings)

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in PRODUCTION_ENVIRONMENTS

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        environment = _env_str("BLAZION_ENV", fallback="NODE_ENV", default="development")
        is_production = environment.strip().lower() in PRODUCTION_ENVIRONMENTS
        packs = _parse_csv(os.getenv("BLAZION_PACKS", "blog"))
        return cls(
            db_path=db_path
            or Path(_env_str("BLAZION_DB_PATH", fallback="DATABASE_PATH", default="data/blazion.db")),
            environment=environment,
            packs=packs,
            notion=NotionSettings(
                api_key=_env_str("BLAZION_NOTION_API_KEY", fallback="NOTION_API_KEY"),
                database_ids=_collect_database_ids(packs),
                parent_page_id=_env_str("BLAZION_NOTION_PAGE_ID", fallback="NOTION_PAGE_ID"),
                api_base_url=os.getenv("BLAZION_NOTION_API_BASE_URL", DEFAULT_NOTION_API_BASE_URL),
                public_api_base_url=os.getenv(
                    "BLAZION_NOTION_PUBLIC_API_BASE_URL",
                    DEFAULT_NOTION_PUBLIC_API_BASE_URL,
                ),
                api_version=os.getenv("BLAZION_NOTION_API_VERSION", DEFAULT_NOTION_API_VERSION),
                request_timeout_seconds=_env_float("BLAZION_NOTION_TIMEOUT_SECONDS", 30.0),
                max_attempts=_env_positive_int("BLAZION_NOTION_MAX_ATTEMPTS", 4),
                retry_base_delay_seconds=_env_float("BLAZION_NOTION_RETRY_BASE_SECONDS", 0.3),
                retry_max_delay_seconds=_env_float("BLAZION_NOTION_RETRY_MAX_SECONDS", 4.0),
            ),
            sync=SyncSettings(
                public_only=_env_bool("BLAZION_SYNC_PUBLIC_ONLY", default=True),
                sync_cron=os.getenv("BLAZION_SYNC_CRON", "*/30 * * * *"),
                image_refresh_cron=os.getenv("BLAZION_IMAGE_REFRESH_CRON", "0 * * * *"),
                scheduler_enabled=_env_bool("BLAZION_SCHEDULER_ENABLED", default=True),
                allow_empty_source_wipe=_env_bool(
                    "BLAZION_SYNC_ALLOW_EMPTY_SOURCE_WIPE",
                    default=False,
                ),
            ),
            coordination=CoordinationSettings(
                image_url_refresh_buffer_seconds=_env_positive_int(
                    "IMAGE_URL_REFRESH_BUFFER_SECONDS",
                    300,
                ),
                image_url_refresh_cooldown_seconds=_env_positive_int(
                    "IMAGE_URL_REFRESH_COOLDOWN_SECONDS",
                    60,
                ),
                hint_enabled=_env_bool("SYNC_HINT_ENABLED", default=not is_production),
                hint_cooldown_seconds=_env_positive_int("SYNC_HINT_COOLDOWN_SECONDS", 60),
            ),
            recommendation=RecommendationSettings(
                default_limit=_env_positive_int("RECOMMENDATION_DEFAULT_LIMIT", 3),
                max_limit=_env_positive_int("RECOMMENDATION_MAX_LIMIT", 6),
                weight_related=_env_positive_int("RECOMMENDATION_WEIGHT_RELATED", 100),
                weight_tag=_env_positive_int("RECOMMENDATION_WEIGHT_TAG", 20),
                weight_segment=_env_positive_int("RECOMMENDATION_WEIGHT_SEGMENT", 12),
                weight_featured=_env_positive_int("RECOMMENDATION_WEIGHT_FEATURED", 8),
                weight_recency=_env_positive_int("RECOMMENDATION_WEIGHT_RECENCY", 6),
                recency_window_days=_env_positive_int("RECOMMENDATION_RECENCY_WINDOW_DAYS", 30),
            ),
            server=ServerSettings(
                host=os.getenv("BLAZION_HOST", "0.0.0.0"),  # noqa: S104
                port=_env_positive_int("PORT", 3000),
                cors_origins=_parse_csv(os.getenv("CORS_ORIGINS", "")),
                admin_api_key=_env_str("BLAZION_SYNC_ADMIN_API_KEY", fallback="SYNC_ADMIN_API_KEY"),
                admin_api_key_enabled=_env_bool(
                    "SYNC_ADMIN_API_KEY_ENABLED",
                    default=is_production,
                ),
                rate_limit_enabled=_env_bool("API_RATE_LIMIT_ENABLED", default=True),
                rate_limit_window_seconds=max(
                    1,
                    _env_positive_int("API_RATE_LIMIT_WINDOW_MS", 60_000) // 1000,
                ),
                rate_limit_default=_env_positive_int("API_RATE_LIMIT_MAX", 60),
                rate_limit_posts=_env_positive_int("API_RATE_LIMIT_POSTS_MAX", 120),
                rate_limit_content=_env_positive_int("API_RATE_LIMIT_CONTENT_MAX", 30),
                rate_limit_sync=_env_positive_int("API_RATE_LIMIT_SYNC_MAX", 2),
            ),
        )

    def validate_for_sync(self) -> None:
        """Raise configuration error if sync cannot reach the content source."""

        if not self.notion.configured:
            raise ValueError(
                "Notion API key is required. Set BLAZION_NOTION_API_KEY or NOTION_API_KEY.",
            )
        if not self.packs:
            raise ValueError("At least one pack must be enabled. Set BLAZION_PACKS.")
        if self.notion.max_attempts <= 0:
            raise ValueError("BLAZION_NOTION_MAX_ATTEMPTS must be > 0.")


def _collect_database_ids(packs: tuple[str, ...]) -> dict[str, str]:
    ids: dict[str, str] = {}
    shared = _env_str("BLAZION_NOTION_DATABASE_ID", fallback="NOTION_DATABASE_ID")
    for pack in packs:
        suffix = pack.upper().replace("-", "_")
        value = _env_str(
            f"BLAZION_NOTION_DATABASE_ID_{suffix}",
            fallback=f"NOTION_DATABASE_ID_{suffix}",
        )
        if value:
            ids[pack] = value
    # A bare database id binds the first enabled pack.
    if shared and packs and packs[0] not in ids:
        ids[packs[0]] = shared
    return ids


def _parse_csv(raw: str) -> tuple[str, ...]:
    values: list[str] = []
    for part in raw.split(","):
        token = part.strip()
        if token and token not in values:
            values.append(token)
    return tuple(values)


def _env_str(name: str, *, fallback: str | None = None, default: str = "") -> str:
    value = os.getenv(name)
    if value is None and fallback is not None:
        value = os.getenv(fallback)
    if value is None:
        return default
    return value.strip()


def _env_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error
    if value <= 0:
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {raw!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
