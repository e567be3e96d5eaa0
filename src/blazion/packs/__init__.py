"""Content pack registry."""

from __future__ import annotations

from blazion.packs.base import PackApiContext, PackDescriptor, PackSyncContext
from blazion.packs.blog import BLOG_PACK

AVAILABLE_PACKS: tuple[PackDescriptor, ...] = (BLOG_PACK,)


def resolve_registered_packs(names: tuple[str, ...] | list[str]) -> list[PackDescriptor]:
    """Known packs that are enabled, in registry order."""

    enabled = set(names)
    return [pack for pack in AVAILABLE_PACKS if pack.name in enabled]


def resolve_unknown_pack_names(names: tuple[str, ...] | list[str]) -> list[str]:
    known = {pack.name for pack in AVAILABLE_PACKS}
    return [name for name in names if name not in known]


__all__ = [
    "AVAILABLE_PACKS",
    "PackApiContext",
    "PackDescriptor",
    "PackSyncContext",
    "resolve_registered_packs",
    "resolve_unknown_pack_names",
]
