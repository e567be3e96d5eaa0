"""Expiry detection for time-limited signed media URLs."""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlsplit

_AMZ_DATE_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})T(\d{2})(\d{2})(\d{2})Z$")


def signed_url_expiry(url: str | None) -> datetime | None:
    """Return the expiry instant from ``X-Amz-Date`` + ``X-Amz-Expires``, or ``None``."""

    if not url:
        return None
    try:
        query = parse_qs(urlsplit(url).query)
    except ValueError:
        return None

    issued_raw = (query.get("X-Amz-Date") or [""])[0]
    expires_raw = (query.get("X-Amz-Expires") or [""])[0]
    match = _AMZ_DATE_RE.match(issued_raw)
    if match is None or not expires_raw.isdigit():
        return None
    expires_seconds = int(expires_raw)
    if expires_seconds <= 0:
        return None

    year, month, day, hour, minute, second = (int(part) for part in match.groups())
    try:
        issued_at = datetime(year, month, day, hour, minute, second, tzinfo=UTC)
    except ValueError:
        return None
    return issued_at + timedelta(seconds=expires_seconds)


def needs_refresh(url: str | None, *, now: datetime, buffer_seconds: int) -> bool:
    """True when the URL expires within the buffer; unknown expiry never needs refresh."""

    expiry = signed_url_expiry(url)
    if expiry is None:
        return False
    return (expiry - now).total_seconds() <= buffer_seconds


def any_needs_refresh(urls: Iterable[str | None], *, now: datetime, buffer_seconds: int) -> bool:
    return any(needs_refresh(url, now=now, buffer_seconds=buffer_seconds) for url in urls)
