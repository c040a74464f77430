"""Attribute taxonomy — the growing, append-only library of attribute definitions.

One ``AttributeTaxonomy`` exists per entity kind. Categories are created on
first merge; definitions are appended when their name is new to the category
and are never edited or removed afterwards, so any historical generation can
be replayed against a snapshot.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Mapping

from core.entity import PLACEABLE_KINDS, EntityKind
from core.rules import AttributeDefinition, CategoryDefinition, GameRules

logger = logging.getLogger(__name__)

COMMON_CATEGORY = "common"


class AttributeTaxonomy:
    """Per-kind category -> ordered attribute definitions."""

    def __init__(
        self,
        kind: EntityKind,
        categories: Iterable[CategoryDefinition] | None = None,
    ):
        self.kind = kind
        self._categories: dict[str, list[AttributeDefinition]] = {}
        self._registry_lock = threading.Lock()
        self._category_locks: dict[str, threading.Lock] = {}

        for category in categories or []:
            self.merge(category.attributes, category.name)

    def _lock_for(self, category: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._category_locks.get(category)
            if lock is None:
                lock = threading.Lock()
                self._category_locks[category] = lock
            return lock

    def lookup(self, category: str) -> list[AttributeDefinition]:
        """Definitions of ``category`` followed by the common category's.

        A name present in both is reported once, with the category's version.
        """
        seen: set[str] = set()
        result: list[AttributeDefinition] = []
        for name in (category, COMMON_CATEGORY):
            for definition in list(self._categories.get(name, [])):
                if definition.name in seen:
                    continue
                seen.add(definition.name)
                result.append(definition)
        return result

    def merge(
        self,
        definitions: Iterable[AttributeDefinition] | Mapping[str, AttributeDefinition],
        category: str,
    ) -> list[str]:
        """Append definitions whose names are new to ``category``.

        Returns the names actually appended. Merging the same definitions
        again appends nothing.
        """
        if isinstance(definitions, Mapping):
            definitions = definitions.values()

        appended: list[str] = []
        with self._lock_for(category):
            existing = self._categories.get(category)
            if existing is None:
                existing = []
                self._categories[category] = existing
                logger.info("Created %s category '%s'", self.kind.value, category)

            known = {d.name for d in existing}
            for definition in definitions:
                if definition.name in known:
                    continue
                existing.append(definition.model_copy())
                known.add(definition.name)
                appended.append(definition.name)

        if appended:
            logger.info(
                "Added %d attribute(s) to %s/%s: %s",
                len(appended), self.kind.value, category, ", ".join(appended),
            )
        return appended

    def get(self, category: str) -> CategoryDefinition | None:
        definitions = self._categories.get(category)
        if definitions is None:
            return None
        return CategoryDefinition(
            name=category,
            attributes=[d.model_copy() for d in definitions],
        )

    def category_names(self, include_common: bool = False) -> list[str]:
        return [
            name for name in self._categories
            if include_common or name != COMMON_CATEGORY
        ]

    def snapshot(self) -> list[CategoryDefinition]:
        """Deep copy of every category, in creation order."""
        return [self.get(name) for name in list(self._categories)]

    def __contains__(self, category: str) -> bool:
        return category in self._categories

    def __len__(self) -> int:
        return len(self._categories)


class Taxonomies:
    """The three per-kind taxonomies of one world."""

    def __init__(self, taxonomies: Mapping[EntityKind, AttributeTaxonomy] | None = None):
        self._taxonomies: dict[EntityKind, AttributeTaxonomy] = {
            kind: AttributeTaxonomy(kind) for kind in PLACEABLE_KINDS
        }
        if taxonomies:
            self._taxonomies.update(taxonomies)

    @classmethod
    def from_rules(cls, rules: GameRules) -> Taxonomies:
        return cls({
            kind: AttributeTaxonomy(kind, rules.categories_for(kind))
            for kind in PLACEABLE_KINDS
        })

    def __getitem__(self, kind: EntityKind) -> AttributeTaxonomy:
        return self._taxonomies[kind]

    def to_rules(self, base: GameRules) -> GameRules:
        """Return ``base`` with its categories replaced by the current library."""
        return base.model_copy(update={
            "item_categories": self[EntityKind.ITEM].snapshot(),
            "npc_categories": self[EntityKind.NPC].snapshot(),
            "location_categories": self[EntityKind.LOCATION].snapshot(),
        })
