from __future__ import annotations

from pathlib import Path

import allure
import pytest

from blazion.config import NotionSettings, Settings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]

_ENV_NAMES = (
    "BLAZION_ENV",
    "NODE_ENV",
    "BLAZION_PACKS",
    "BLAZION_DB_PATH",
    "DATABASE_PATH",
    "BLAZION_NOTION_API_KEY",
    "NOTION_API_KEY",
    "BLAZION_NOTION_DATABASE_ID",
    "NOTION_DATABASE_ID",
    "BLAZION_NOTION_DATABASE_ID_BLOG",
    "NOTION_DATABASE_ID_BLOG",
    "SYNC_HINT_ENABLED",
    "SYNC_ADMIN_API_KEY_ENABLED",
    "PORT",
    "CORS_ORIGINS",
    "RECOMMENDATION_MAX_LIMIT",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_defaults_for_local_development() -> None:
    settings = Settings.from_env()

    assert settings.db_path == Path("data/blazion.db")
    assert settings.packs == ("blog",)
    assert settings.is_production is False
    assert settings.coordination.hint_enabled is True
    assert settings.server.admin_api_key_enabled is False
    assert settings.server.port == 3000
    assert settings.recommendation.default_limit == 3
    assert settings.notion.configured is False


def test_production_flips_hint_and_key_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NODE_ENV", "production")

    settings = Settings.from_env()

    assert settings.is_production is True
    assert settings.coordination.hint_enabled is False
    assert settings.server.admin_api_key_enabled is True


def test_prefixed_names_win_over_fallbacks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NOTION_API_KEY", "legacy")
    monkeypatch.setenv("BLAZION_NOTION_API_KEY", "primary")
    monkeypatch.setenv("DATABASE_PATH", "/tmp/legacy.db")

    settings = Settings.from_env(db_path=Path("override.db"))

    assert settings.notion.api_key == "primary"
    assert settings.db_path == Path("override.db")


def test_database_ids_per_pack_and_shared(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BLAZION_PACKS", "blog, docs, blog")
    monkeypatch.setenv("NOTION_DATABASE_ID", "shared-db")
    monkeypatch.setenv("NOTION_DATABASE_ID_DOCS", "docs-db")

    settings = Settings.from_env()

    assert settings.packs == ("blog", "docs")
    assert settings.notion.database_ids == {"blog": "shared-db", "docs": "docs-db"}


def test_cors_origins_are_parsed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example,")

    assert Settings.from_env().server.cors_origins == ("https://a.example", "https://b.example")


def test_invalid_values_name_the_variable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PORT", "eighty")
    with pytest.raises(ValueError, match="PORT"):
        Settings.from_env()

    monkeypatch.setenv("PORT", "3000")
    monkeypatch.setenv("SYNC_HINT_ENABLED", "maybe")
    with pytest.raises(ValueError, match="SYNC_HINT_ENABLED"):
        Settings.from_env()


def test_non_positive_integers_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RECOMMENDATION_MAX_LIMIT", "0")

    assert Settings.from_env().recommendation.max_limit == 6


def test_validate_for_sync_requires_api_key_and_packs() -> None:
    with pytest.raises(ValueError, match="Notion API key is required"):
        Settings().validate_for_sync()

    with pytest.raises(ValueError, match="At least one pack"):
        Settings(notion=NotionSettings(api_key="key"), packs=()).validate_for_sync()

    Settings(notion=NotionSettings(api_key="key")).validate_for_sync()
