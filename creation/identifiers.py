"""IdentifierAllocator — unique, human-legible, monotonically increasing ids.

Format: ``<kindTag>_<slug(name)>_<categoryTag>_<counter:03d>``, e.g.
``ite_iron_shortsword_wea_001``. The counter is scoped by (kind, category),
so two items with the same name never collide.
"""

from __future__ import annotations

import re
import threading

from core.entity import EntityKind

KIND_TAGS = {
    EntityKind.ITEM: "ite",
    EntityKind.NPC: "npc",
    EntityKind.LOCATION: "loc",
}

_NON_SLUG = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def slugify(text: str) -> str:
    """Lower-case, drop non-alphanumerics, join words with underscores."""
    slug = _WHITESPACE.sub("_", _NON_SLUG.sub("", text.lower()).strip())
    return slug or "unnamed"


class IdentifierAllocator:
    """Counter-backed id factory. Share one instance per world."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[tuple[EntityKind, str], int] = {}

    def next(self, kind: EntityKind, category: str, display_name: str) -> str:
        """Allocate the next identifier for (kind, category)."""
        kind = EntityKind(kind)
        if kind not in KIND_TAGS:
            raise ValueError(f"No identifier tag for kind {kind.value!r}")
        count = self._increment((kind, category))
        category_tag = slugify(category)[:3]
        return f"{KIND_TAGS[kind]}_{slugify(display_name)}_{category_tag}_{count:03d}"

    def next_region(self, display_name: str) -> str:
        count = self._increment((EntityKind.REGION, ""))
        return f"region_{slugify(display_name)}_{count:03d}"

    def _increment(self, key: tuple[EntityKind, str]) -> int:
        with self._lock:
            count = self._counters.get(key, 0) + 1
            self._counters[key] = count
            return count

    def stats(self) -> dict[str, dict[str, int]]:
        """Current counters grouped by kind, e.g. ``{"item": {"weapon": 2}}``."""
        with self._lock:
            grouped: dict[str, dict[str, int]] = {}
            for (kind, category), count in self._counters.items():
                grouped.setdefault(kind.value, {})[category] = count
            return grouped

    def reset(self) -> None:
        """Forget every counter (for testing)."""
        with self._lock:
            self._counters.clear()
