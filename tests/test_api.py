from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from dataclasses import replace
from datetime import timedelta
from pathlib import Path

import allure
import pytest
from fastapi.testclient import TestClient

from blazion.api.app import create_app
from blazion.config import (
    CoordinationSettings,
    NotionSettings,
    ServerSettings,
    Settings,
    SyncSettings,
)
from blazion.content.models import Author, PostStatus
from blazion.content.sources import NonRetryableSourceError
from blazion.coordination.state import SyncTrigger
from blazion.runtime import Runtime, build_runtime
from conftest import BASE_TIME, FakeSource, make_record

pytestmark = [
    allure.epic("Content API"),
    allure.feature("HTTP Endpoints"),
]

ClientFactory = Callable[..., tuple[TestClient, Runtime]]


@pytest.fixture()
def make_client(tmp_path: Path) -> Iterator[ClientFactory]:
    clients: list[TestClient] = []

    def _make(
        *,
        source: FakeSource | None = None,
        server: ServerSettings | None = None,
        coordination: CoordinationSettings | None = None,
        configured: bool = True,
    ) -> tuple[TestClient, Runtime]:
        settings = Settings(
            db_path=tmp_path / f"api-{len(clients)}.db",
            notion=NotionSettings(
                api_key="key" if configured else "",
                database_ids={"blog": "db-1"},
            ),
            sync=SyncSettings(scheduler_enabled=False),
            coordination=coordination or CoordinationSettings(hint_enabled=True),
            server=server or ServerSettings(),
        )
        runtime = build_runtime(settings, source=source)
        client = TestClient(create_app(runtime=runtime))
        client.__enter__()
        clients.append(client)
        return client, runtime

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


def _seed(runtime: Runtime) -> None:
    repository = runtime.repository
    repository.upsert_post(
        make_record(
            source_id="p1",
            slug="python-tips",
            title="Python tips",
            tags=["Python"],
            author=Author(name="Ada"),
            related_source_ids=["p3"],
            published_at=BASE_TIME - timedelta(days=1),
            read_time_minutes=5,
        ),
    )
    repository.upsert_post(
        make_record(
            source_id="p2",
            slug="rust-notes",
            title="Rust notes",
            tags=["Rust"],
            author=Author(name="Grace"),
            segment="systems",
            is_public=False,
            published_at=BASE_TIME - timedelta(days=3),
        ),
    )
    repository.upsert_post(
        make_record(
            source_id="p3",
            slug="testing-python",
            title="Testing Python",
            tags=["python"],
            featured=True,
            published_at=BASE_TIME - timedelta(days=2),
        ),
    )
    repository.upsert_post(
        make_record(source_id="p4", slug="draft", title="Draft", status=PostStatus.DRAFT),
    )


def test_health_reports_store_and_packs(make_client: ClientFactory, fake_source: FakeSource) -> None:
    client, _ = make_client(source=fake_source)

    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["database"] == "connected"
    assert body["notionConfigured"] is True
    assert body["enabledPacks"] == ["blog"]
    assert body["syncEnabledPacks"] == ["blog"]
    assert "timestamp" in body


def test_every_response_carries_security_headers(make_client: ClientFactory) -> None:
    client, _ = make_client(configured=False)

    for response in (client.get("/api/health"), client.get("/api/unknown")):
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Permissions-Policy"] == "camera=(), microphone=(), geolocation=()"


def test_listing_returns_camel_case_page_with_facets(make_client: ClientFactory) -> None:
    client, runtime = make_client(configured=False)
    _seed(runtime)

    response = client.get("/api/blog/posts", params={"limit": 2})

    assert response.status_code == 200
    assert response.headers["Cache-Control"] == "public, max-age=60, stale-while-revalidate=300"
    body = response.json()
    assert [post["slug"] for post in body["data"]] == ["python-tips", "testing-python"]
    first = body["data"][0]
    assert first["sourceId"] == "p1"
    assert first["author"] == "Ada"
    assert first["readTimeMinutes"] == 5
    assert first["relatedPostIds"] == ["p3"]
    assert first["isPublic"] is True
    assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}
    assert body["facets"]["authors"] == [
        {"value": "Ada", "count": 2},
        {"value": "Grace", "count": 1},
    ]
    assert body["appliedFilters"]["sort"] == "newest"
    assert body["appliedFilters"]["dateFrom"] == ""


def test_listing_applies_filters(make_client: ClientFactory) -> None:
    client, runtime = make_client(configured=False)
    _seed(runtime)

    response = client.get(
        "/api/blog/posts",
        params={
            "tags": "python",
            "author": "ada",
            "featured": "yes",
            "dateFrom": "2026-01-08",
            "dateTo": "2026-01-09",
            "sort": "oldest",
        },
    )

    body = response.json()
    assert [post["slug"] for post in body["data"]] == ["testing-python"]
    assert body["appliedFilters"] == {
        "q": "",
        "dateFrom": "2026-01-08T00:00:00.000Z",
        "dateTo": "2026-01-09T23:59:59.999Z",
        "tags": ["python"],
        "authors": ["ada"],
        "segments": [],
        "featuredOnly": True,
        "sort": "oldest",
    }


def test_listing_with_no_matches_has_zero_pages(make_client: ClientFactory) -> None:
    client, runtime = make_client(configured=False)
    _seed(runtime)

    body = client.get("/api/blog/posts", params={"q": "kotlin"}).json()

    assert body["data"] == []
    assert body["pagination"]["totalPages"] == 0


@pytest.mark.parametrize("params", [{"page": 0}, {"limit": 51}, {"sort": "random"}])
def test_invalid_listing_query_is_rejected(make_client: ClientFactory, params: dict) -> None:
    client, _ = make_client(configured=False)

    response = client.get("/api/blog/posts", params=params)

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid query"
    assert body["message"] == "Invalid pagination or filter query parameters."
    assert body["details"]


def test_single_post_and_not_found(make_client: ClientFactory) -> None:
    client, runtime = make_client(configured=False)
    _seed(runtime)

    found = client.get("/api/blog/posts/python-tips")
    draft = client.get("/api/blog/posts/draft")

    assert found.status_code == 200
    assert found.headers["Cache-Control"] == "public, max-age=120, stale-while-revalidate=600"
    assert found.json()["data"]["title"] == "Python tips"
    assert draft.status_code == 404
    assert draft.json() == {"error": "Not found", "message": 'Post with slug "draft" not found'}


def test_recommendations_exclude_current_post(make_client: ClientFactory) -> None:
    client, runtime = make_client(configured=False)
    _seed(runtime)

    response = client.get("/api/blog/posts/python-tips/recommendations", params={"limit": 1})

    assert response.status_code == 200
    body = response.json()
    assert [post["slug"] for post in body["data"]] == ["testing-python"]
    assert body["strategy"] == "related_ids"

    everything = client.get("/api/blog/posts/python-tips/recommendations", params={"limit": 99})
    slugs = [post["slug"] for post in everything.json()["data"]]
    assert "python-tips" not in slugs
    assert len(slugs) == 2

    missing = client.get("/api/blog/posts/nope/recommendations")
    assert missing.status_code == 404


def test_search_index_limits_results(make_client: ClientFactory) -> None:
    client, runtime = make_client(configured=False)
    _seed(runtime)

    assert len(client.get("/api/blog/search-index").json()["data"]) == 3
    assert len(client.get("/api/blog/search-index", params={"limit": 1}).json()["data"]) == 1


def test_content_switches_render_mode(make_client: ClientFactory, fake_source: FakeSource) -> None:
    client, runtime = make_client(source=fake_source)
    _seed(runtime)

    public = client.get("/api/blog/posts/python-tips/content")
    private = client.get("/api/blog/posts/rust-notes/content")

    assert public.status_code == 200
    assert public.json() == {
        "recordMap": {"block": {"p1": {"value": {"id": "p1"}}}},
        "renderMode": "recordMap",
    }
    assert public.headers["Cache-Control"] == "public, max-age=120, stale-while-revalidate=600"
    assert private.json() == {
        "recordMap": {},
        "blocks": [{"type": "paragraph", "id": "b1"}],
        "renderMode": "blocks",
    }
    assert private.headers["Cache-Control"] == "public, max-age=60, stale-while-revalidate=300"


def test_content_errors(make_client: ClientFactory, fake_source: FakeSource) -> None:
    unconfigured, runtime = make_client(configured=False)
    _seed(runtime)
    failing_source = replace(
        fake_source,
        content_error=NonRetryableSourceError(message="gone", status_code=404),
    )
    failing, failing_runtime = make_client(source=failing_source)
    _seed(failing_runtime)

    assert unconfigured.get("/api/blog/posts/python-tips/content").status_code == 503
    assert unconfigured.get("/api/blog/posts/nope/content").status_code == 404
    response = failing.get("/api/blog/posts/python-tips/content")
    assert response.status_code == 502
    assert response.json()["error"] == "Content fetch failed"


def test_manual_sync_runs_and_reports_counts(
    make_client: ClientFactory,
    fake_source: FakeSource,
) -> None:
    fake_source.records = [make_record()]
    client, runtime = make_client(source=fake_source)

    response = client.post("/api/sync")

    assert response.status_code == 200
    assert response.json() == {
        "status": "completed",
        "synced": 1,
        "skipped": 0,
        "errors": 0,
        "removed": 0,
    }
    assert runtime.repository.get_ready_post_by_slug("first-post") is not None


def test_manual_sync_conflicts_with_running_pass(
    make_client: ClientFactory,
    fake_source: FakeSource,
) -> None:
    client, runtime = make_client(source=fake_source)
    runtime.coordinator.hint(ip="10.0.0.1", session_id="s")

    response = client.post("/api/sync")

    assert response.status_code == 409
    assert response.json() == {"status": "in_progress", "message": "A sync is already running."}


def test_manual_sync_errors(make_client: ClientFactory, fake_source: FakeSource) -> None:
    fake_source.fetch_error = RuntimeError("boom")
    client, _ = make_client(source=fake_source)
    unconfigured, _ = make_client(configured=False)

    failed = client.post("/api/sync")
    unknown_pack = client.post("/api/sync", params={"pack": "docs"})
    not_configured = unconfigured.post("/api/sync")

    assert failed.status_code == 500
    assert failed.json() == {"error": "Sync failed", "message": "Could not sync data from Notion."}
    assert unknown_pack.status_code == 400
    assert unknown_pack.json()["available"] == ["blog"]
    assert not_configured.status_code == 503
    assert "NOTION_API_KEY" in not_configured.json()["message"]


def test_sync_endpoints_require_admin_key_when_enabled(
    make_client: ClientFactory,
    fake_source: FakeSource,
) -> None:
    client, _ = make_client(
        source=fake_source,
        server=ServerSettings(
            admin_api_key="s3cret",
            admin_api_key_enabled=True,
            rate_limit_sync=10,
        ),
    )
    keyless, _ = make_client(
        source=fake_source,
        server=ServerSettings(admin_api_key_enabled=True),
    )

    missing = client.post("/api/sync")
    wrong = client.post("/api/sync", headers={"X-API-Key": "nope"})
    header = client.post("/api/sync", headers={"X-API-Key": "s3cret"})
    bearer = client.post("/api/sync/images", headers={"Authorization": "Bearer s3cret"})
    unconfigured = keyless.post("/api/sync", headers={"X-API-Key": "anything"})

    assert missing.status_code == 401
    assert missing.json()["message"] == "Missing or invalid API key for sync endpoints."
    assert wrong.status_code == 401
    assert header.status_code == 200
    assert bearer.status_code == 200
    assert unconfigured.status_code == 401
    assert "SYNC_ADMIN_API_KEY is required" in unconfigured.json()["message"]


def test_image_refresh_endpoint(make_client: ClientFactory, fake_source: FakeSource) -> None:
    fake_source.records = [make_record(banner_image_url="https://files.example.com/a.png")]
    client, runtime = make_client(source=fake_source)

    response = client.post("/api/sync/images")

    assert response.status_code == 200
    assert response.json()["synced"] == 1
    assert runtime.coordinator.status().image_refresh.source.value == "manual"

    fake_source.fetch_error = RuntimeError("boom")
    failed = client.post("/api/sync/images")
    assert failed.status_code == 500
    assert failed.json()["error"] == "Refresh failed"


def test_image_refresh_conflicts_with_running_refresh(
    make_client: ClientFactory,
    fake_source: FakeSource,
) -> None:
    client, runtime = make_client(source=fake_source)
    started = threading.Event()
    release = threading.Event()

    def block() -> None:
        started.set()
        release.wait(5)

    fake_source.before_fetch = block
    worker = threading.Thread(
        target=runtime.coordinator.run_image_refresh,
        args=(SyncTrigger.CRON,),
    )
    worker.start()
    try:
        assert started.wait(5)
        response = client.post("/api/sync/images")
    finally:
        release.set()
        worker.join(5)

    assert response.status_code == 409
    assert response.json() == {
        "status": "in_progress",
        "message": "An image URL refresh is already running.",
    }
    assert fake_source.calls.count("fetch_all:db-1") == 1


def test_hint_queues_background_sync_then_rate_limits(
    make_client: ClientFactory,
    fake_source: FakeSource,
) -> None:
    fake_source.records = [make_record()]
    client, runtime = make_client(source=fake_source)

    queued = client.post("/api/sync/hint", headers={"X-Sync-Session": "visitor-1"})
    limited = client.post("/api/sync/hint", headers={"X-Sync-Session": "visitor-2"})

    assert queued.status_code == 202
    assert queued.json()["status"] == "queued"
    assert queued.json()["nextAllowedAt"].endswith("Z")
    assert runtime.repository.get_ready_post_by_slug("first-post") is not None
    assert runtime.coordinator.status().sync.source.value == "hint"
    assert limited.status_code == 429
    assert limited.json()["status"] == "rate_limited"
    assert limited.json()["scope"] == "ip_minute"
    assert int(limited.headers["Retry-After"]) >= 1


def test_hint_cooldown_and_disabled(make_client: ClientFactory, fake_source: FakeSource) -> None:
    client, runtime = make_client(
        source=fake_source,
        coordination=CoordinationSettings(hint_enabled=True, ip_minute_limit=5),
    )
    disabled, _ = make_client(
        source=fake_source,
        coordination=CoordinationSettings(hint_enabled=False),
    )
    runtime.coordinator.run_sync(SyncTrigger.MANUAL)

    cooldown = client.post("/api/sync/hint", headers={"X-Sync-Session": "a"})
    off = disabled.post("/api/sync/hint")

    assert cooldown.status_code == 202
    assert cooldown.json()["status"] == "cooldown"
    assert cooldown.json()["retryAfterMs"] > 0
    assert off.status_code == 403
    assert off.json()["status"] == "disabled"


def test_sync_status_shape(make_client: ClientFactory, fake_source: FakeSource) -> None:
    fake_source.records = [make_record()]
    client, _ = make_client(source=fake_source)
    client.post("/api/sync")

    body = client.get("/api/sync/status").json()

    assert body["status"] == "idle"
    assert body["lastSyncSource"] == "manual"
    assert body["lastSyncResult"] == {"synced": 1, "skipped": 0, "errors": 0, "removed": 0}
    assert body["lastSyncPackResults"]["blog"]["synced"] == 1
    assert body["lastSyncStartedAt"].endswith("Z")
    assert body["lastImageRefreshSource"] == "none"
    assert body["lastImageRefreshStartedAt"] is None
    assert body["imageUrlRefreshBufferSeconds"] == 300
    assert body["syncHintEnabled"] is True
    assert body["enabledPacks"] == ["blog"]
    assert body["syncEnabledPacks"] == ["blog"]
    assert body["hintCooldownRemainingMs"] > 0


def test_sync_route_rate_limit(make_client: ClientFactory, fake_source: FakeSource) -> None:
    client, _ = make_client(source=fake_source, server=ServerSettings(rate_limit_sync=2))

    statuses = [client.post("/api/sync").status_code for _ in range(3)]
    blocked = client.post("/api/sync")

    assert statuses == [200, 200, 429]
    assert blocked.json()["error"] == "Rate limit exceeded"
    assert int(blocked.headers["Retry-After"]) >= 1
    assert client.get("/api/health").status_code == 200


def test_preflight_is_never_rate_limited(make_client: ClientFactory) -> None:
    client, _ = make_client(configured=False, server=ServerSettings(rate_limit_default=1))
    headers = {
        "Origin": "https://blog.example",
        "Access-Control-Request-Method": "POST",
        "Access-Control-Request-Headers": "X-API-Key",
    }

    responses = [client.options("/api/sync", headers=headers) for _ in range(3)]

    assert [response.status_code for response in responses] == [200, 200, 200]
    assert responses[0].headers["access-control-allow-origin"] in {"*", "https://blog.example"}
    assert client.get("/api/health").status_code == 200
    assert client.get("/api/health").status_code == 429
