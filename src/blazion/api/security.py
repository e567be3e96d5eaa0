"""Request identity and admin key checks for sync endpoints."""

from __future__ import annotations

import hmac

from fastapi import HTTPException, Request

from blazion.config import ServerSettings

SESSION_HEADER = "x-sync-session"
IP_HEADERS = ("cf-connecting-ip", "x-real-ip", "x-client-ip")
MAX_SESSION_ID_LENGTH = 128
BEARER_PREFIX = "bearer "


def client_ip(request: Request) -> str:
    """First hop of ``X-Forwarded-For``, then single-value proxy headers, then the socket peer."""

    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",", 1)[0].strip()
    if first:
        return first
    for header in IP_HEADERS:
        value = request.headers.get(header, "").strip()
        if value:
            return value
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


def session_id(request: Request, ip: str) -> str:
    """Visitor session key from ``X-Sync-Session``; the client ip stands in when absent."""

    header = request.headers.get(SESSION_HEADER, "").strip()
    return header[:MAX_SESSION_ID_LENGTH] if header else ip


def provided_api_key(request: Request) -> str:
    key = request.headers.get("x-api-key", "").strip()
    if key:
        return key
    authorization = request.headers.get("authorization", "").strip()
    if authorization.lower().startswith(BEARER_PREFIX):
        return authorization[len(BEARER_PREFIX) :].strip()
    return authorization


def require_admin_key(request: Request, settings: ServerSettings) -> None:
    """Raise 401 unless key protection is off or the request carries the configured key."""

    if not settings.admin_api_key_enabled:
        return
    if not settings.admin_api_key:
        raise HTTPException(
            status_code=401,
            detail={
                "error": "Unauthorized",
                "message": "SYNC_ADMIN_API_KEY is required when sync key protection is enabled.",
            },
        )
    provided = provided_api_key(request)
    if not provided or not hmac.compare_digest(
        provided.encode(),
        settings.admin_api_key.encode(),
    ):
        raise HTTPException(
            status_code=401,
            detail={
                "error": "Unauthorized",
                "message": "Missing or invalid API key for sync endpoints.",
            },
        )
