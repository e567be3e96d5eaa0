"""Decode loosely typed Notion page properties into content records.

Each property type has one decoder. A missing property, a property of another type, or a
malformed payload degrades to the type's safe default, so ``decode_page`` never raises.
Only an empty resolved title or slug rejects a row.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any

from blazion.content.models import Author, ContentRecord, PostStatus
from blazion.content.text import gravatar_url, normalize_tags, slugify

TITLE_PROPERTY = "Title"
SLUG_PROPERTY = "Slug"
SUMMARY_PROPERTY = "Summary"
AUTHOR_PROPERTY = "Author"
TAGS_PROPERTY = "Tags"
SEGMENT_PROPERTY = "Segment"
STATUS_PROPERTY = "Status"
PUBLISHED_PROPERTY = "Published"
BANNER_PROPERTY = "Banner"
FEATURED_PROPERTY = "Featured"
RELATED_PROPERTY = "Related Posts"


@dataclass(slots=True)
class Person:
    name: str
    email: str | None
    avatar_url: str | None


def _plain_text(items: Any) -> str:
    return "".join(str(item.get("plain_text") or "") for item in items).strip()


def _decode_title(prop: dict[str, Any]) -> str:
    return _plain_text(prop["title"])


def _decode_rich_text(prop: dict[str, Any]) -> str:
    return _plain_text(prop["rich_text"])


def _decode_select(prop: dict[str, Any]) -> str | None:
    selected = prop.get("select")
    if not selected:
        return None
    name = str(selected.get("name") or "").strip()
    return name or None


def _decode_multi_select(prop: dict[str, Any]) -> list[str]:
    return [str(option["name"]) for option in prop["multi_select"] if option.get("name")]


def _decode_date(prop: dict[str, Any]) -> str | None:
    value = prop.get("date")
    if not value:
        return None
    return value.get("start") or None


def _decode_files(prop: dict[str, Any]) -> str | None:
    files = prop["files"]
    if not files:
        return None
    first = files[0]
    kind = first.get("type")
    if kind not in {"external", "file"}:
        return None
    return (first.get(kind) or {}).get("url") or None


def _decode_checkbox(prop: dict[str, Any]) -> bool:
    return bool(prop.get("checkbox"))


def _decode_relation(prop: dict[str, Any]) -> list[str]:
    return [str(item["id"]) for item in prop["relation"] if item.get("id")]


def _decode_people(prop: dict[str, Any]) -> list[Person]:
    people: list[Person] = []
    for item in prop["people"]:
        email = ((item.get("person") or {}).get("email") or "").strip() or None
        name = str(item.get("name") or "").strip() or (email or "")
        if not name:
            continue
        people.append(Person(name=name, email=email, avatar_url=item.get("avatar_url") or None))
    return people


_DECODERS: dict[str, tuple[Callable[[dict[str, Any]], Any], Callable[[], Any]]] = {
    "title": (_decode_title, str),
    "rich_text": (_decode_rich_text, str),
    "select": (_decode_select, lambda: None),
    "multi_select": (_decode_multi_select, list),
    "date": (_decode_date, lambda: None),
    "files": (_decode_files, lambda: None),
    "checkbox": (_decode_checkbox, bool),
    "relation": (_decode_relation, list),
    "people": (_decode_people, list),
}


def read_property(properties: Any, key: str, kind: str) -> Any:
    """Decode property ``key`` as ``kind``, or return the kind's default."""

    decoder, default = _DECODERS[kind]
    if not isinstance(properties, dict):
        return default()
    prop = properties.get(key)
    if not isinstance(prop, dict) or prop.get("type") != kind:
        return default()
    try:
        return decoder(prop)
    except (AttributeError, KeyError, TypeError, ValueError):
        return default()


def parse_source_datetime(value: Any) -> datetime | None:
    """Parse ISO dates and datetimes; date-only values mean midnight UTC."""

    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    try:
        if len(raw) == 10:
            day = date.fromisoformat(raw)
            return datetime(day.year, day.month, day.day, tzinfo=UTC)
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def decode_status(value: str | None) -> PostStatus:
    try:
        return PostStatus((value or "").strip().lower())
    except ValueError:
        return PostStatus.DRAFT


def decode_author(properties: Any) -> Author | None:
    """Prefer the people property; fall back to the legacy free-text author."""

    people = read_property(properties, AUTHOR_PROPERTY, "people")
    if people:
        person = people[0]
        avatar_url = person.avatar_url
        if not avatar_url and person.email:
            avatar_url = gravatar_url(person.email)
        return Author(name=person.name, email=person.email, avatar_url=avatar_url)

    legacy_name = read_property(properties, AUTHOR_PROPERTY, "rich_text")
    if legacy_name:
        return Author(name=legacy_name)
    return None


def decode_page(page: Any) -> ContentRecord | None:
    """Map one query result into a record, or ``None`` for partial or untitled rows."""

    if not isinstance(page, dict) or page.get("object") != "page":
        return None
    properties = page.get("properties")
    source_id = page.get("id")
    created_at = parse_source_datetime(page.get("created_time"))
    updated_at = parse_source_datetime(page.get("last_edited_time"))
    if not isinstance(properties, dict) or not source_id or created_at is None:
        return None

    title = read_property(properties, TITLE_PROPERTY, "title")
    slug = slugify(read_property(properties, SLUG_PROPERTY, "rich_text") or title)
    if not title or not slug:
        return None

    segment = read_property(properties, SEGMENT_PROPERTY, "select")
    return ContentRecord(
        source_id=str(source_id),
        title=title,
        slug=slug,
        summary=read_property(properties, SUMMARY_PROPERTY, "rich_text"),
        author=decode_author(properties),
        tags=normalize_tags(read_property(properties, TAGS_PROPERTY, "multi_select")),
        segment=segment,
        status=decode_status(read_property(properties, STATUS_PROPERTY, "select")),
        published_at=parse_source_datetime(
            read_property(properties, PUBLISHED_PROPERTY, "date"),
        ),
        banner_image_url=read_property(properties, BANNER_PROPERTY, "files"),
        featured=read_property(properties, FEATURED_PROPERTY, "checkbox"),
        related_source_ids=read_property(properties, RELATED_PROPERTY, "relation"),
        is_public=bool(page.get("public_url")),
        source_url=page.get("url") or None,
        created_at=created_at,
        updated_at=updated_at or created_at,
    )
