"""Notion content source built on the REST API and the public page-chunk API."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from blazion.config import NotionSettings
from blazion.content.models import ContentRecord, RenderableContent, RenderMode
from blazion.content.sources.base import (
    NonRetryableSourceError,
    SchemaMismatchError,
    SourceError,
    TemporarySourceError,
)
from blazion.content.sources.properties import (
    SLUG_PROPERTY,
    STATUS_PROPERTY,
    TITLE_PROPERTY,
    decode_page,
)
from blazion.content.text import count_words, read_time_from_words

RETRYABLE_HTTP_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
RETRYABLE_ERROR_CODES = frozenset({"rate_limited", "service_unavailable", "internal_server_error"})
REQUIRED_STATUS_OPTIONS = ("draft", "pending", "ready")
SCHEMA_MISMATCH_MESSAGE = "Notion database schema does not match minimum viable shape"
MAX_RECORD_MAP_CHUNKS = 50

logger = logging.getLogger(__name__)


class NotionSource:
    """Content source adapter for one Notion integration.

    All calls go through ``_request``, which retries transient failures with capped
    exponential backoff and raises ``NonRetryableSourceError`` on the first permanent one.
    """

    def __init__(
        self,
        settings: NotionSettings,
        *,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=settings.api_base_url,
            timeout=httpx.Timeout(settings.request_timeout_seconds, connect=10.0),
            headers={
                "Authorization": f"Bearer {settings.api_key}",
                "Notion-Version": settings.api_version,
                "Content-Type": "application/json",
            },
            transport=transport,
        )
        self._public_client = httpx.Client(
            base_url=settings.public_api_base_url,
            timeout=httpx.Timeout(settings.request_timeout_seconds, connect=10.0),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()
        self._public_client.close()

    def __enter__(self) -> NotionSource:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def fetch_all(self, database_id: str) -> list[ContentRecord]:
        records: list[ContentRecord] = []
        cursor: str | None = None
        while True:
            body: dict[str, Any] = {"page_size": self.settings.page_size}
            if cursor:
                body["start_cursor"] = cursor
            payload = self._request("POST", f"/databases/{database_id}/query", json=body)
            for result in payload.get("results") or []:
                record = decode_page(result)
                if record is None:
                    logger.debug("Skipping partial or untitled Notion row in %s", database_id)
                    continue
                records.append(record)
            cursor = payload.get("next_cursor")
            if not payload.get("has_more") or not cursor:
                break
        return records

    def get_block_content(self, page_id: str) -> list[dict[str, Any]]:
        """Return the flat list of top-level child blocks, following pagination."""

        blocks: list[dict[str, Any]] = []
        cursor: str | None = None
        while True:
            params: dict[str, Any] = {"page_size": self.settings.page_size}
            if cursor:
                params["start_cursor"] = cursor
            payload = self._request("GET", f"/blocks/{page_id}/children", params=params)
            blocks.extend(payload.get("results") or [])
            cursor = payload.get("next_cursor")
            if not payload.get("has_more") or not cursor:
                break
        return blocks

    def get_record_map(self, page_id: str) -> dict[str, Any]:
        """Load the rich record map of a public page chunk by chunk."""

        record_map: dict[str, Any] = {}
        stack: list[Any] = []
        for chunk_number in range(MAX_RECORD_MAP_CHUNKS):
            payload = self._request(
                "POST",
                "/loadPageChunk",
                client=self._public_client,
                json={
                    "pageId": _dashed_id(page_id),
                    "limit": 100,
                    "cursor": {"stack": stack},
                    "chunkNumber": chunk_number,
                    "verticalColumns": False,
                },
            )
            for table, entries in (payload.get("recordMap") or {}).items():
                if isinstance(entries, dict):
                    record_map.setdefault(table, {}).update(entries)
            stack = (payload.get("cursor") or {}).get("stack") or []
            if not stack:
                break
        return record_map

    def estimate_read_time(self, record_id: str, *, is_public: bool) -> int | None:
        if is_public:
            try:
                words = _count_record_map_words(self.get_record_map(record_id))
            except Exception as error:  # noqa: BLE001
                logger.info(
                    "Record map unavailable for %s, falling back to blocks: %s",
                    record_id,
                    error,
                )
                words = 0
            if words > 0:
                return read_time_from_words(words)
        return read_time_from_words(_count_block_words(self.get_block_content(record_id)))

    def fetch_renderable_content(self, record_id: str, *, is_public: bool) -> RenderableContent:
        if is_public:
            return RenderableContent(
                render_mode=RenderMode.RECORD_MAP,
                record_map=self.get_record_map(record_id),
            )
        return RenderableContent(
            render_mode=RenderMode.BLOCKS,
            blocks=self.get_block_content(record_id),
        )

    def assert_minimum_schema(self, database_id: str) -> None:
        payload = self._request("GET", f"/databases/{database_id}")
        problems = schema_problems(payload)
        if problems:
            raise SchemaMismatchError(
                message=SCHEMA_MISMATCH_MESSAGE,
                code="schema_mismatch",
                problems=problems,
            )

    def find_compatible_database(self, parent_page_id: str) -> str | None:
        """Return the first child database of a page that passes the schema check."""

        for block in self.get_block_content(parent_page_id):
            if block.get("type") != "child_database" or not block.get("id"):
                continue
            database_id = str(block["id"])
            payload = self._request("GET", f"/databases/{database_id}")
            if not schema_problems(payload):
                return database_id
            logger.info("Child database %s is not compatible, skipping", database_id)
        return None

    def _request(
        self,
        method: str,
        path: str,
        *,
        client: httpx.Client | None = None,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        http = client or self._client
        attempt = 0
        last_error: TemporarySourceError | None = None
        while attempt < self.settings.max_attempts:
            attempt += 1
            try:
                response = http.request(method, path, json=json, params=params)
            except httpx.TransportError as exc:
                last_error = TemporarySourceError(
                    message=f"Notion transport error: {exc}",
                    code="transport",
                )
            else:
                if response.is_success:
                    return _decode_body(response, path)
                error = _classify_error_response(response)
                if not isinstance(error, TemporarySourceError):
                    raise error
                last_error = error

            if attempt < self.settings.max_attempts:
                delay = self.settings.retry_base_delay_seconds * 2 ** (attempt - 1)
                if last_error.retry_after is not None:
                    delay = max(delay, float(last_error.retry_after))
                delay = min(delay, self.settings.retry_max_delay_seconds)
                logger.warning(
                    "Retrying Notion %s %s after %s (attempt %s/%s, delay %.2fs)",
                    method,
                    path,
                    last_error.code,
                    attempt,
                    self.settings.max_attempts,
                    delay,
                )
                self._sleep(delay)

        if last_error is None:
            raise TemporarySourceError(message="Notion request failed", code="unknown")
        raise last_error


def schema_problems(database: dict[str, Any]) -> list[str]:
    """List the ways a database payload misses the minimum property shape."""

    properties = database.get("properties")
    if not isinstance(properties, dict):
        return ["database has no properties"]

    problems: list[str] = []
    title = properties.get(TITLE_PROPERTY)
    if not isinstance(title, dict) or title.get("type") != "title":
        problems.append(f"'{TITLE_PROPERTY}' must be a title property")
    slug = properties.get(SLUG_PROPERTY)
    if not isinstance(slug, dict) or slug.get("type") != "rich_text":
        problems.append(f"'{SLUG_PROPERTY}' must be a rich_text property")

    status = properties.get(STATUS_PROPERTY)
    if not isinstance(status, dict) or status.get("type") != "select":
        problems.append(f"'{STATUS_PROPERTY}' must be a select property")
        return problems
    options = (status.get("select") or {}).get("options") or []
    names = {str(option.get("name") or "").lower() for option in options if isinstance(option, dict)}
    missing = [name for name in REQUIRED_STATUS_OPTIONS if name not in names]
    if missing:
        problems.append(f"'{STATUS_PROPERTY}' is missing options: {', '.join(missing)}")
    return problems


def _decode_body(response: httpx.Response, path: str) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise NonRetryableSourceError(
            message=f"Notion returned a non-JSON body for {path}",
            code="invalid_response",
            status_code=response.status_code,
        ) from exc
    if not isinstance(payload, dict):
        raise NonRetryableSourceError(
            message=f"Notion returned an unexpected payload for {path}",
            code="invalid_response",
            status_code=response.status_code,
        )
    return payload


def _classify_error_response(response: httpx.Response) -> SourceError:
    code = str(response.status_code)
    message = response.reason_phrase or "request failed"
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        code = str(body.get("code") or code)
        message = str(body.get("message") or message)

    if response.status_code in RETRYABLE_HTTP_STATUS_CODES or code in RETRYABLE_ERROR_CODES:
        return TemporarySourceError(
            message=f"Temporary Notion error {response.status_code}: {message}",
            code=code,
            status_code=response.status_code,
            retry_after=_parse_retry_after(response.headers.get("Retry-After")),
        )
    return NonRetryableSourceError(
        message=f"Notion error {response.status_code}: {message}",
        code=code,
        status_code=response.status_code,
    )


def _parse_retry_after(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _count_record_map_words(record_map: dict[str, Any]) -> int:
    words = 0
    for entry in (record_map.get("block") or {}).values():
        value = entry.get("value") if isinstance(entry, dict) else None
        properties = value.get("properties") if isinstance(value, dict) else None
        if isinstance(properties, dict):
            words += count_words(_flatten_text(properties.get("title")))
    return words


def _count_block_words(blocks: list[dict[str, Any]]) -> int:
    words = 0
    for block in blocks:
        payload = block.get(str(block.get("type") or ""))
        if not isinstance(payload, dict):
            continue
        for item in payload.get("rich_text") or []:
            if isinstance(item, dict):
                words += count_words(str(item.get("plain_text") or ""))
    return words


def _flatten_text(value: Any) -> str:
    # Record map titles are nested [[text, [decorations]], ...] arrays.
    if isinstance(value, str):
        return value
    if isinstance(value, list) and value:
        head = value[0]
        if isinstance(head, str):
            return head
        return " ".join(_flatten_text(item) for item in value)
    return ""


def _dashed_id(page_id: str) -> str:
    compact = page_id.replace("-", "")
    if len(compact) != 32:
        return page_id
    return f"{compact[:8]}-{compact[8:12]}-{compact[12:16]}-{compact[16:20]}-{compact[20:]}"
