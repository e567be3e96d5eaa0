"""FastAPI application factory: middleware, sync endpoints, and pack routes."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTask
from starlette.exceptions import HTTPException as StarletteHTTPException

from blazion import __version__
from blazion.api.scheduler import build_scheduler
from blazion.api.schemas import HealthResponse, SyncStatusResponse
from blazion.api.security import client_ip, require_admin_key, session_id
from blazion.config import ServerSettings, Settings
from blazion.coordination.rate_limit import FixedWindowCounter
from blazion.coordination.state import (
    HintDecision,
    HintStatus,
    NoSyncTargetsError,
    SyncOutcomeStatus,
    SyncTrigger,
    epoch_ms,
    to_iso,
)
from blazion.packs import PackApiContext
from blazion.runtime import Runtime, build_runtime

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-Frame-Options": "DENY",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}
CORS_METHODS = ["GET", "POST", "OPTIONS"]
CORS_HEADERS = ["Content-Type", "Authorization", "X-API-Key", "X-Sync-Session"]
NOT_CONFIGURED_MESSAGE = (
    "Sync is not configured. Set NOTION_API_KEY and bind a database for at least one pack."
)
_CONTENT_PATH_RE = re.compile(r"^/api/blog/posts/[^/]+/content$")


def create_app(settings: Settings | None = None, *, runtime: Runtime | None = None) -> FastAPI:
    """Build the HTTP app around a runtime; one is bootstrapped from ``settings`` when omitted."""

    if runtime is None:
        runtime = build_runtime(settings or Settings.from_env())
    settings = runtime.settings
    coordinator = runtime.coordinator

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        scheduler: BackgroundScheduler | None = None
        if settings.sync.scheduler_enabled and coordinator.has_targets:
            scheduler = build_scheduler(coordinator, settings.sync)
            scheduler.start()
            logger.info(
                "Scheduler started (sync=%r images=%r)",
                settings.sync.sync_cron,
                settings.sync.image_refresh_cron,
            )
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown(wait=False)
            await run_in_threadpool(runtime.close)

    app = FastAPI(title="Blazion", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime

    _install_exception_handlers(app)
    _install_rate_limits(app, settings.server)

    @app.middleware("http")
    async def security_headers(request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.server.cors_origins) or ["*"],
        allow_methods=CORS_METHODS,
        allow_headers=CORS_HEADERS,
    )

    @app.get("/api/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        connected = await run_in_threadpool(runtime.repository.is_connected)
        return HealthResponse(
            status="ok",
            database="connected" if connected else "disconnected",
            notion_configured=settings.notion.configured,
            enabled_packs=runtime.enabled_pack_names,
            sync_enabled_packs=runtime.sync_pack_names,
            timestamp=datetime.now(tz=UTC),
        )

    @app.post("/api/sync")
    async def manual_sync(request: Request, pack: str | None = None) -> JSONResponse:
        _check_sync_request(request, runtime, pack)
        try:
            outcome = await run_in_threadpool(coordinator.run_sync, SyncTrigger.MANUAL, pack)
        except NoSyncTargetsError as error:
            raise _not_configured() from error
        except Exception as error:
            logger.exception("Manual sync failed")
            raise HTTPException(
                status_code=500,
                detail={"error": "Sync failed", "message": "Could not sync data from Notion."},
            ) from error
        if outcome.status == SyncOutcomeStatus.IN_PROGRESS:
            return JSONResponse(
                status_code=409,
                content={"status": "in_progress", "message": "A sync is already running."},
            )
        result = outcome.result.as_dict() if outcome.result else {}
        return JSONResponse(content={"status": "completed", **result})

    @app.post("/api/sync/images")
    async def manual_image_refresh(request: Request, pack: str | None = None) -> JSONResponse:
        _check_sync_request(request, runtime, pack)
        try:
            outcome = await run_in_threadpool(
                coordinator.run_image_refresh,
                SyncTrigger.MANUAL,
                pack,
            )
        except NoSyncTargetsError as error:
            raise _not_configured() from error
        except Exception as error:
            logger.exception("Manual image URL refresh failed")
            raise HTTPException(
                status_code=500,
                detail={
                    "error": "Refresh failed",
                    "message": "Could not refresh image URLs from Notion.",
                },
            ) from error
        if outcome.status != SyncOutcomeStatus.COMPLETED:
            return JSONResponse(
                status_code=409,
                content={
                    "status": "in_progress",
                    "message": "An image URL refresh is already running.",
                },
            )
        result = outcome.result.as_dict() if outcome.result else {}
        return JSONResponse(content={"status": "completed", **result})

    @app.post("/api/sync/hint")
    async def sync_hint(request: Request) -> JSONResponse:
        ip = client_ip(request)
        decision = coordinator.hint(ip=ip, session_id=session_id(request, ip))
        return _hint_response(decision, coordinator.run_claimed_sync)

    @app.get("/api/sync/status", response_model=SyncStatusResponse)
    async def sync_status() -> SyncStatusResponse:
        return SyncStatusResponse.from_status(
            coordinator.status(),
            enabled_packs=runtime.enabled_pack_names,
        )

    for pack in runtime.packs:
        pack.register_routes(
            app,
            PackApiContext(
                repository=runtime.repository,
                source=runtime.source,
                sync_service=runtime.services.get(pack.name),
                coordinator=coordinator,
                settings=settings,
            ),
        )
    return app


def _check_sync_request(request: Request, runtime: Runtime, pack: str | None) -> None:
    require_admin_key(request, runtime.settings.server)
    pack_name = (pack or "").strip()
    if pack_name and pack_name not in runtime.services:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Pack not available",
                "message": f'Pack "{pack_name}" is not enabled for sync.',
                "available": runtime.sync_pack_names,
            },
        )
    if not runtime.coordinator.has_targets:
        raise _not_configured()


def _not_configured() -> HTTPException:
    return HTTPException(
        status_code=503,
        detail={"error": "Not configured", "message": NOT_CONFIGURED_MESSAGE},
    )


def _hint_response(decision: HintDecision, run_claimed_sync: Callable[[], object]) -> JSONResponse:
    if decision.status == HintStatus.DISABLED:
        return JSONResponse(
            status_code=403,
            content={"status": "disabled", "message": "Sync hints are disabled."},
        )
    if decision.status == HintStatus.NOT_CONFIGURED:
        return JSONResponse(
            status_code=503,
            content={"status": "not_configured", "message": NOT_CONFIGURED_MESSAGE},
        )
    if decision.status == HintStatus.RATE_LIMITED:
        retry_after_ms = decision.retry_after_ms or 0
        return JSONResponse(
            status_code=429,
            content={
                "status": "rate_limited",
                "scope": decision.scope,
                "retryAfterMs": retry_after_ms,
            },
            headers={"Retry-After": str(max(1, math.ceil(retry_after_ms / 1000)))},
        )
    if decision.status == HintStatus.IN_PROGRESS:
        return JSONResponse(
            status_code=202,
            content={
                "status": "in_progress",
                "lastSyncStartedAt": to_iso(decision.last_sync_started_at_ms),
                "lastSyncSource": decision.last_sync_source.value,
            },
        )
    if decision.status == HintStatus.COOLDOWN:
        return JSONResponse(
            status_code=202,
            content={
                "status": "cooldown",
                "nextAllowedAt": to_iso(decision.next_allowed_at_ms or 0),
                "retryAfterMs": decision.retry_after_ms,
            },
        )
    return JSONResponse(
        status_code=202,
        content={"status": "queued", "nextAllowedAt": to_iso(decision.next_allowed_at_ms or 0)},
        background=BackgroundTask(_run_hinted_sync, run_claimed_sync),
    )


def _run_hinted_sync(run_claimed_sync: Callable[[], object]) -> None:
    try:
        run_claimed_sync()
    except Exception:  # noqa: BLE001
        logger.exception("Hint-triggered sync failed")


def _install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        content = exc.detail if isinstance(exc.detail, dict) else {"error": str(exc.detail)}
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "error": "Invalid query",
                "message": "Invalid pagination or filter query parameters.",
                "details": jsonable_encoder(exc.errors()),
            },
        )


def _install_rate_limits(app: FastAPI, settings: ServerSettings) -> None:
    if not settings.rate_limit_enabled:
        return
    window_ms = settings.rate_limit_window_seconds * 1000
    rules: list[tuple[str, Callable[[str], bool], FixedWindowCounter]] = [
        (
            "default",
            lambda path: path.startswith("/api/"),
            FixedWindowCounter(window_ms=window_ms, limit=settings.rate_limit_default),
        ),
        (
            "posts",
            lambda path: path == "/api/blog/posts",
            FixedWindowCounter(window_ms=window_ms, limit=settings.rate_limit_posts),
        ),
        (
            "content",
            lambda path: _CONTENT_PATH_RE.match(path) is not None,
            FixedWindowCounter(window_ms=window_ms, limit=settings.rate_limit_content),
        ),
        (
            "sync",
            lambda path: path == "/api/sync",
            FixedWindowCounter(window_ms=window_ms, limit=settings.rate_limit_sync),
        ),
        (
            "images",
            lambda path: path == "/api/sync/images",
            FixedWindowCounter(window_ms=window_ms, limit=settings.rate_limit_sync),
        ),
    ]

    @app.middleware("http")
    async def rate_limit(request: Request, call_next: Callable) -> Response:
        if request.method == "OPTIONS":
            return await call_next(request)
        path = request.url.path
        ip = client_ip(request)
        now = epoch_ms()
        for name, matches, counter in rules:
            if not matches(path):
                continue
            decision = counter.try_consume(f"{name}:{ip}", now)
            if not decision.allowed:
                retry_after = max(1, math.ceil(decision.retry_after_ms / 1000))
                return JSONResponse(
                    status_code=429,
                    content={
                        "error": "Rate limit exceeded",
                        "message": f"Too many requests. Retry in {retry_after} seconds.",
                    },
                    headers={"Retry-After": str(retry_after)},
                )
        return await call_next(request)
