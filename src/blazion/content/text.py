"""Text helpers shared by the source adapter and the API."""

from __future__ import annotations

import hashlib
import math
import re

WORDS_PER_MINUTE = 220

_NON_WORD_RE = re.compile(r"[^\w\s-]")
_SEPARATOR_RE = re.compile(r"[\s_-]+")
_EDGE_HYPHEN_RE = re.compile(r"^-+|-+$")


def slugify(value: str) -> str:
    """Lowercase, strip non-word characters, and collapse separators to hyphens."""

    slug = value.lower().strip()
    slug = _NON_WORD_RE.sub("", slug)
    slug = _SEPARATOR_RE.sub("-", slug)
    return _EDGE_HYPHEN_RE.sub("", slug)


def normalize_tags(values: list[str]) -> list[str]:
    """Drop blanks and case-insensitive duplicates, keeping first-seen casing and order."""

    seen: set[str] = set()
    tags: list[str] = []
    for value in values:
        tag = value.strip()
        if not tag:
            continue
        key = tag.lower()
        if key in seen:
            continue
        seen.add(key)
        tags.append(tag)
    return tags


def gravatar_url(email: str) -> str:
    digest = hashlib.md5(email.strip().lower().encode("utf-8"), usedforsecurity=False).hexdigest()
    return f"https://www.gravatar.com/avatar/{digest}?d=identicon"


def count_words(text: str) -> int:
    return len(text.split())


def read_time_from_words(word_count: int) -> int | None:
    """Minutes at 220 wpm, rounded up; zero words means unknown."""

    if word_count <= 0:
        return None
    return max(1, math.ceil(word_count / WORDS_PER_MINUTE))
