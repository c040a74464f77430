"""SpatialRegistry — indexes world entities by position and by kind.

Two structures are kept in lockstep under one lock:

- buckets: (region, x, y) -> entity ids present there, split by kind
- flat registries: kind -> id -> entity, in insertion order

A reverse index (kind, id) -> bucket key makes ``remove`` and ``update``
O(1) instead of a bucket scan. Regions are stored separately; they are
buckets themselves, never entries in one.

Entities are copied on the way in and on the way out. Change an entity by
passing a modified copy to ``update``.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from core.entity import PLACEABLE_KINDS, BucketKey, Entity, EntityKind, Region
from core.errors import DuplicateEntityError, RegistryConsistencyError

if TYPE_CHECKING:
    from world.orchestrator import GeneratedWorld

logger = logging.getLogger(__name__)


class BucketContents(BaseModel):
    """Everything present at one (region, x, y)."""

    items: list[Entity] = Field(default_factory=list)
    npcs: list[Entity] = Field(default_factory=list)
    locations: list[Entity] = Field(default_factory=list)

    def for_kind(self, kind: EntityKind) -> list[Entity]:
        return getattr(self, EntityKind(kind).plural)

    def is_empty(self) -> bool:
        return not (self.items or self.npcs or self.locations)

    def __len__(self) -> int:
        return len(self.items) + len(self.npcs) + len(self.locations)


class SpatialRegistry:
    """Thread-safe spatial index plus flat per-kind registries."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._flat: dict[EntityKind, dict[str, Entity]] = {
            kind: {} for kind in PLACEABLE_KINDS
        }
        self._buckets: dict[BucketKey, dict[EntityKind, list[str]]] = {}
        self._bucket_of: dict[tuple[EntityKind, str], BucketKey] = {}
        self._regions: dict[str, Region] = {}

    # --- Entities ---

    def add(self, entity: Entity, kind: EntityKind | None = None) -> None:
        """Register a new entity.

        Raises DuplicateEntityError if the id is already registered for the kind.
        """
        kind = _resolve_kind(entity, kind)
        with self._lock:
            if entity.id in self._flat[kind]:
                raise DuplicateEntityError(
                    f"{kind.value} {entity.id!r} is already registered"
                )
            stored = entity.model_copy(deep=True)
            self._flat[kind][stored.id] = stored
            self._place(kind, stored.id, stored.bucket_key)
        logger.info(
            "Entity registered: %s (%s) [%s] at %s:%d:%d",
            entity.name, entity.id, kind.value, entity.region, entity.x, entity.y,
        )

    def remove(self, entity_id: str, kind: EntityKind) -> Entity | None:
        """Unregister an entity. Returns it, or None if it was not registered."""
        kind = EntityKind(kind)
        with self._lock:
            removed = self._flat[kind].pop(entity_id, None)
            if removed is None:
                logger.warning("Cannot remove: %s %s not found", kind.value, entity_id)
                return None
            self._unplace(kind, entity_id)
        logger.info("Entity unregistered: %s (%s) [%s]", removed.name, entity_id, kind.value)
        return removed

    def update(self, entity: Entity, kind: EntityKind | None = None) -> None:
        """Overwrite an entity, moving it between buckets if its position changed.

        The move and the overwrite happen under one lock acquisition, so no
        reader sees the entity in zero or two buckets. An unknown id is
        inserted.
        """
        kind = _resolve_kind(entity, kind)
        stored = entity.model_copy(deep=True)
        with self._lock:
            if stored.id not in self._flat[kind]:
                logger.info("Update of unregistered %s %s, inserting", kind.value, stored.id)
                self._flat[kind][stored.id] = stored
                self._place(kind, stored.id, stored.bucket_key)
                return

            old_key = self._bucket_of[(kind, stored.id)]
            new_key = stored.bucket_key
            if old_key != new_key:
                self._unplace(kind, stored.id)
                self._place(kind, stored.id, new_key)
                logger.debug(
                    "Moved %s %s from %s to %s", kind.value, stored.id, old_key, new_key,
                )
            self._flat[kind][stored.id] = stored

    def entities_at(self, region: str, x: int, y: int) -> BucketContents:
        """Entities in one bucket. An unpopulated bucket yields empty lists."""
        with self._lock:
            bucket = self._buckets.get((region, x, y))
            if bucket is None:
                return BucketContents()
            return BucketContents(**{
                kind.plural: [
                    self._flat[kind][entity_id].model_copy(deep=True)
                    for entity_id in bucket.get(kind, [])
                ]
                for kind in PLACEABLE_KINDS
            })

    def by_id(self, entity_id: str, kind: EntityKind) -> Entity | None:
        with self._lock:
            entity = self._flat[EntityKind(kind)].get(entity_id)
            return entity.model_copy(deep=True) if entity is not None else None

    def all(self, kind: EntityKind) -> list[Entity]:
        """Every entity of ``kind`` in registration order."""
        with self._lock:
            return [e.model_copy(deep=True) for e in self._flat[EntityKind(kind)].values()]

    def bucket_keys(self) -> list[BucketKey]:
        with self._lock:
            return list(self._buckets)

    def __len__(self) -> int:
        with self._lock:
            return sum(len(entities) for entities in self._flat.values())

    def __contains__(self, key: tuple[EntityKind, str]) -> bool:
        kind, entity_id = key
        with self._lock:
            return entity_id in self._flat[EntityKind(kind)]

    # --- Regions ---

    def add_region(self, region: Region) -> None:
        with self._lock:
            if region.id in self._regions:
                raise DuplicateEntityError(f"region {region.id!r} is already registered")
            self._regions[region.id] = region.model_copy(deep=True)
        logger.info(
            "Region registered: %s (%s) at (%d, %d)",
            region.name, region.id, region.region_x, region.region_y,
        )

    def update_region(self, region: Region) -> None:
        """Overwrite a region. Raises KeyError if it was never added."""
        with self._lock:
            if region.id not in self._regions:
                raise KeyError(region.id)
            self._regions[region.id] = region.model_copy(deep=True)

    def by_region_id(self, region_id: str) -> Region | None:
        with self._lock:
            region = self._regions.get(region_id)
            return region.model_copy(deep=True) if region is not None else None

    def by_grid_coordinates(self, region_x: int, region_y: int) -> Region | None:
        """First region registered at the given grid cell."""
        with self._lock:
            for region in self._regions.values():
                if region.region_x == region_x and region.region_y == region_y:
                    return region.model_copy(deep=True)
        return None

    def regions(self) -> list[Region]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._regions.values()]

    # --- Bulk / diagnostics ---

    def populate(
        self,
        world: GeneratedWorld,
        *,
        skip_duplicates: bool = False,
    ) -> list[Entity | Region]:
        """Register every region and entity of an orchestrator result.

        Ids are checked against the registry and within ``world`` before
        anything is written. A duplicate raises DuplicateEntityError and
        leaves the registry untouched, unless ``skip_duplicates`` is set:
        then the duplicates are left out and returned.
        """
        with self._lock:
            rejected: list[Entity | Region] = []
            regions: list[Region] = []
            region_ids = set(self._regions)
            for region in world.regions:
                if region.id in region_ids:
                    rejected.append(region)
                    continue
                region_ids.add(region.id)
                regions.append(region)

            entities: list[tuple[EntityKind, Entity]] = []
            for kind in PLACEABLE_KINDS:
                entity_ids = set(self._flat[kind])
                for entity in world.entities(kind):
                    _resolve_kind(entity, kind)
                    if entity.id in entity_ids:
                        rejected.append(entity)
                        continue
                    entity_ids.add(entity.id)
                    entities.append((kind, entity))

            if rejected and not skip_duplicates:
                raise DuplicateEntityError(
                    "Already registered: " + ", ".join(repr(entry.id) for entry in rejected)
                )

            for region in regions:
                self.add_region(region)
            for kind, entity in entities:
                self.add(entity, kind)

        logger.info(
            "Populated registry: %d regions, %d entities, %d duplicates skipped",
            len(regions), len(entities), len(rejected),
        )
        return rejected

    def check_consistency(self) -> None:
        """Verify buckets, flat registries and the reverse index agree.

        Raises RegistryConsistencyError on the first divergence found. A
        divergence is always a defect in this class, never a runtime condition.
        """
        with self._lock:
            seen: set[tuple[EntityKind, str]] = set()
            for key, bucket in self._buckets.items():
                if not any(bucket.values()):
                    raise RegistryConsistencyError(f"Empty bucket {key} was not pruned")
                for kind, ids in bucket.items():
                    for entity_id in ids:
                        entity = self._flat[kind].get(entity_id)
                        if entity is None:
                            raise RegistryConsistencyError(
                                f"{kind.value} {entity_id} in bucket {key} but not in registry"
                            )
                        if (kind, entity_id) in seen:
                            raise RegistryConsistencyError(
                                f"{kind.value} {entity_id} present in more than one bucket slot"
                            )
                        seen.add((kind, entity_id))
                        if entity.bucket_key != key:
                            raise RegistryConsistencyError(
                                f"{kind.value} {entity_id} at {entity.bucket_key} filed under {key}"
                            )
                        if self._bucket_of.get((kind, entity_id)) != key:
                            raise RegistryConsistencyError(
                                f"Reverse index for {kind.value} {entity_id} is stale"
                            )

            for kind, entities in self._flat.items():
                for entity_id in entities:
                    if (kind, entity_id) not in seen:
                        raise RegistryConsistencyError(
                            f"{kind.value} {entity_id} registered but in no bucket"
                        )
            if len(self._bucket_of) != len(seen):
                raise RegistryConsistencyError("Reverse index holds unknown entities")

    # --- Internals (caller holds the lock) ---

    def _place(self, kind: EntityKind, entity_id: str, key: BucketKey) -> None:
        bucket = self._buckets.setdefault(key, {})
        bucket.setdefault(kind, []).append(entity_id)
        self._bucket_of[(kind, entity_id)] = key

    def _unplace(self, kind: EntityKind, entity_id: str) -> None:
        key = self._bucket_of.pop((kind, entity_id))
        bucket = self._buckets[key]
        bucket[kind].remove(entity_id)
        if not bucket[kind]:
            del bucket[kind]
        if not bucket:
            del self._buckets[key]


def _resolve_kind(entity: Entity, kind: EntityKind | None) -> EntityKind:
    if kind is None:
        return entity.kind
    kind = EntityKind(kind)
    if kind is not entity.kind:
        raise ValueError(f"{type(entity).__name__} cannot be registered as {kind.value}")
    return kind
