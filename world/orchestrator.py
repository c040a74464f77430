"""WorldOrchestrator — builds a whole world from a world specification.

Regions are synthesized first, since entity specs may refer to them by name.
Locations, NPCs and items then run as three concurrent wait-all groups. Every
single synthesis is guarded: a failure drops that one entity, is logged with
its kind and prompt, and is reported to ``on_failure`` callbacks. The batch
itself never fails because of one entity.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field

from config.settings import Settings
from core.entity import Entity, EntityKind, Region
from core.errors import DuplicateEntityError
from core.rules import GameRules
from creation.synthesizer import EntitySynthesizer, SynthesisRequest
from world.registry import SpatialRegistry
from world.specification import EntitySpec, RegionSpec, WorldSpecification
from world.timeline import ORCHESTRATOR_LLM, Timeline, build_tags, location_tag

logger = logging.getLogger(__name__)

# Entity groups, in the order they are reported
ENTITY_GROUPS = (EntityKind.LOCATION, EntityKind.NPC, EntityKind.ITEM)


class GenerationFailure(BaseModel):
    """Enough context to retry one failed synthesis by hand."""

    kind: EntityKind
    prompt: str
    region: str = ""
    error_type: str
    message: str


class GeneratedWorld(BaseModel):
    regions: list[Region] = Field(default_factory=list)
    locations: list[Entity] = Field(default_factory=list)
    npcs: list[Entity] = Field(default_factory=list)
    items: list[Entity] = Field(default_factory=list)
    failures: list[GenerationFailure] = Field(default_factory=list)
    elapsed_ms: float = 0.0

    def entities(self, kind: EntityKind) -> list[Entity]:
        return getattr(self, EntityKind(kind).plural)

    def counts(self) -> dict[str, int]:
        return {
            "regions": len(self.regions),
            "locations": len(self.locations),
            "npcs": len(self.npcs),
            "items": len(self.items),
            "failures": len(self.failures),
        }


class WorldOrchestrator:
    """Drives many concurrent syntheses and assembles the result."""

    def __init__(
        self,
        synthesizer: EntitySynthesizer,
        settings: Settings | None = None,
        timeline: Timeline | None = None,
        max_concurrency: int | None = None,
    ):
        self.synthesizer = synthesizer
        self.settings = settings or synthesizer.settings
        self.timeline = timeline or Timeline()
        self.max_concurrency = max_concurrency or self.settings.MAX_CONCURRENT_SYNTHESES
        self._semaphore = asyncio.Semaphore(self.max_concurrency)

        # Callbacks: sync or async callables
        self._on_failure: list = []    # (failure: GenerationFailure)
        self._on_generated: list = []  # (kind: EntityKind, result: Entity | Region)

    def on_failure(self, callback) -> None:
        """Register a callback for failed syntheses: callback(failure)."""
        self._on_failure.append(callback)

    def on_generated(self, callback) -> None:
        """Register a callback for each finished region or entity: callback(kind, result)."""
        self._on_generated.append(callback)

    async def build(
        self,
        spec: WorldSpecification,
        rules: GameRules,
        *,
        registry: SpatialRegistry | None = None,
        with_context: bool = False,
    ) -> GeneratedWorld:
        """Synthesize every region and entity in ``spec``.

        Returns the (possibly smaller) world of everything that succeeded.
        When ``registry`` is given the world is also registered into it; an
        entry whose id the registry already holds is dropped and reported as
        a failure.
        Cancelling this coroutine cancels all in-flight syntheses.
        """
        started = time.perf_counter()
        world = GeneratedWorld()
        logger.info(
            "Building world: %d regions, %d locations, %d npcs, %d items",
            len(spec.regions), len(spec.locations), len(spec.npcs), len(spec.items),
        )

        # 1. Regions
        regions = await asyncio.gather(*(
            self._guarded(
                EntityKind.REGION,
                region_spec.to_prompt(),
                region_spec.name,
                world,
                lambda rs=region_spec: self._synthesize_region(rs, rules),
            )
            for region_spec in spec.regions
        ))
        region_ids: dict[str, str] = {}
        region_by_id: dict[str, Region] = {}
        for region_spec, region in zip(spec.regions, regions):
            if region is None:
                continue
            world.regions.append(region)
            region_by_id[region.id] = region
            region_ids[region_spec.name.strip().lower()] = region.id
            region_ids.setdefault(region.name.strip().lower(), region.id)

        # 2. Locations, NPCs and items, all three groups at once
        groups = await asyncio.gather(*(
            self._build_group(
                kind, spec.specs_for(kind), rules, region_ids, region_by_id, world, with_context,
            )
            for kind in ENTITY_GROUPS
        ))
        for kind, entities in zip(ENTITY_GROUPS, groups):
            world.entities(kind).extend(entities)

        if registry is not None:
            rejected = registry.populate(world, skip_duplicates=True)
            if rejected:
                await self._drop_rejected(world, rejected)

        world.elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.info(
            "World built in %.1fs: %s",
            world.elapsed_ms / 1000,
            ", ".join(f"{n} {label}" for label, n in world.counts().items()),
        )
        return world

    async def _build_group(
        self,
        kind: EntityKind,
        specs: list[EntitySpec],
        rules: GameRules,
        region_ids: dict[str, str],
        region_by_id: dict[str, Region],
        world: GeneratedWorld,
        with_context: bool,
    ) -> list[Entity]:
        kind_rules = rules.for_kind(kind)
        requests = []
        for entity_spec in specs:
            region_id = self._resolve_region(entity_spec.region, region_ids, region_by_id)
            context = None
            if with_context:
                context = self._context_for(entity_spec, region_by_id.get(region_id))
            requests.append(SynthesisRequest(
                kind=kind,
                prompt=entity_spec.prompt,
                rules=kind_rules,
                region=region_id,
                x=entity_spec.x,
                y=entity_spec.y,
                context=context,
            ))

        results = await asyncio.gather(*(
            self._guarded(
                kind,
                request.prompt,
                request.region,
                world,
                lambda r=request: self._synthesize_entity(r),
            )
            for request in requests
        ))
        return [entity for entity in results if entity is not None]

    async def _synthesize_region(self, region_spec: RegionSpec, rules: GameRules) -> Region:
        region = await self.synthesizer.synthesize_region(
            region_spec.to_prompt(), rules, region_spec.region_x, region_spec.region_y,
        )
        self.timeline.log(
            build_tags(region.id, "generation", ORCHESTRATOR_LLM, "ai", extras=["kind:region"]),
            f"Generated region {region.name} at ({region.region_x}, {region.region_y})",
        )
        await self._fire(self._on_generated, EntityKind.REGION, region)
        return region

    async def _synthesize_entity(self, request: SynthesisRequest) -> Entity:
        result = await self.synthesizer.synthesize(request)
        entity = result.entity
        self.timeline.log(
            build_tags(
                location_tag(entity.region, entity.x, entity.y),
                "generation",
                ORCHESTRATOR_LLM,
                "ai",
                extras=[f"kind:{request.kind.value}", f"id:{entity.id}"],
            ),
            f"Generated {request.kind.value} {entity.name} "
            f"({entity.category}, {entity.rarity.value})",
        )
        await self._fire(self._on_generated, request.kind, entity)
        return entity

    async def _guarded(
        self,
        kind: EntityKind,
        prompt: str,
        region: str,
        world: GeneratedWorld,
        operation: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Run one synthesis under the concurrency cap. Returns None on failure."""
        timeout = self.settings.SYNTHESIS_TIMEOUT
        async with self._semaphore:
            try:
                if timeout > 0:
                    return await asyncio.wait_for(operation(), timeout=timeout)
                return await operation()
            except asyncio.TimeoutError as e:
                error_type = "TimeoutError"
                message = f"timed out after {timeout:g}s" if timeout > 0 else (str(e) or "timed out")
                logger.error("Failed to generate %s from %r: %s", kind.value, prompt, message)
            except Exception as e:
                error_type, message = type(e).__name__, str(e)
                logger.error(
                    "Failed to generate %s from %r: %s: %s",
                    kind.value, prompt, error_type, message,
                )

        failure = GenerationFailure(
            kind=kind,
            prompt=prompt,
            region=region,
            error_type=error_type,
            message=message,
        )
        world.failures.append(failure)
        await self._fire(self._on_failure, failure)
        return None

    async def _drop_rejected(
        self,
        world: GeneratedWorld,
        rejected: list[Entity | Region],
    ) -> None:
        """Turn entries the registry refused as duplicates into failures."""
        for entry in rejected:
            if isinstance(entry, Region):
                kind, region, group = EntityKind.REGION, entry.id, world.regions
            else:
                kind, region, group = entry.kind, entry.region, world.entities(entry.kind)
            group[:] = [kept for kept in group if kept is not entry]

            message = f"{kind.value} {entry.id!r} is already registered"
            logger.error("Failed to register %s %s: %s", kind.value, entry.name, message)
            failure = GenerationFailure(
                kind=kind,
                prompt=entry.name,
                region=region,
                error_type=DuplicateEntityError.__name__,
                message=message,
            )
            world.failures.append(failure)
            await self._fire(self._on_failure, failure)

    @staticmethod
    def _resolve_region(
        region: str,
        region_ids: dict[str, str],
        region_by_id: dict[str, Region],
    ) -> str:
        """Map a region name from the specification onto a generated region id."""
        if region in region_by_id:
            return region
        resolved = region_ids.get(region.strip().lower())
        if resolved is None:
            logger.warning("Region %r matches no generated region, using it as an id", region)
            return region
        return resolved

    def _context_for(self, entity_spec: EntitySpec, region: Region | None) -> str:
        parts = []
        if region is not None:
            parts.append(
                f"Region: {region.name} ({region.theme}, {region.biome}). {region.description}"
            )
        if entity_spec.rationale:
            parts.append(f"Significance: {entity_spec.rationale}")
        if len(self.timeline):
            parts.append(self.timeline.to_summary())
        return "\n".join(parts)

    @staticmethod
    async def _fire(callbacks: list, *args: Any) -> None:
        """Notify registered callbacks. Callback errors never reach the batch."""
        for cb in callbacks:
            try:
                result = cb(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.debug("Orchestrator callback error", exc_info=True)
