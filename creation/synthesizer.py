"""EntitySynthesizer — turns a prompt and a rule set into a finished entity.

Stages run in a fixed order:

1. context (optional): summarize ambient world context into a narrative
2. metadata: schema-constrained name, rarity, descriptions, category, purpose
3. attributes and image, concurrently
4. merge: metadata + attributes + image reference + placement -> Entity

What happens when a stage fails is looked up in ``STAGE_POLICIES`` rather
than being implied by where an exception happens to be caught.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Optional, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from config.settings import Settings
from core.entity import (
    ENTITY_MODELS,
    PLACEABLE_KINDS,
    Attribute,
    AttributeType,
    Entity,
    EntityKind,
    Rarity,
    Region,
    infer_attribute_type,
)
from core.errors import (
    AttributeGenerationError,
    GenerationError,
    ImageGenerationError,
    MetadataGenerationError,
    SafetyBlockedError,
)
from core.rules import AttributeDefinition, BaseRules, GameRules, KindRules, RULES_MODELS
from creation.backend import GenerationBackend
from creation.identifiers import IdentifierAllocator
from creation.prompts import (
    ATTRIBUTES_PROMPT,
    CONTEXT_PROMPT,
    DEFAULT_CATEGORIES,
    IMAGE_PROMPTS,
    LIBRARY_BLOCK,
    METADATA_PROMPT,
    REGION_PROMPT,
    REGION_SCHEMA,
    RESERVED_ATTRIBUTE_NAMES,
    SOFTENED_IMAGE_PROMPT,
    attribute_types_text,
    format_attribute_list,
    metadata_schema,
)
from creation.taxonomy import Taxonomies

logger = logging.getLogger(__name__)

T = TypeVar("T")

PLACEHOLDER_IMAGE_URL = "placeholder://image-unavailable"
MISSING_REFERENCE = "No calibration reference provided"

_TYPE_ALIASES = {
    "int": AttributeType.INTEGER,
    "float": AttributeType.NUMBER,
    "double": AttributeType.NUMBER,
    "str": AttributeType.STRING,
    "text": AttributeType.STRING,
    "bool": AttributeType.BOOLEAN,
    "list": AttributeType.ARRAY,
}


class Stage(str, Enum):
    CONTEXT = "context"
    METADATA = "metadata"
    ATTRIBUTES = "attributes"
    IMAGE = "image"


class StagePolicy(str, Enum):
    ABORT = "abort"      # failure ends the synthesis and reaches the caller
    DEGRADE = "degrade"  # failure is logged and an empty result substituted


STAGE_POLICIES: dict[Stage, StagePolicy] = {
    Stage.CONTEXT: StagePolicy.DEGRADE,
    Stage.METADATA: StagePolicy.ABORT,
    Stage.ATTRIBUTES: StagePolicy.DEGRADE,
    Stage.IMAGE: StagePolicy.ABORT,
}

_STAGE_ERRORS: dict[Stage, type[GenerationError]] = {
    Stage.CONTEXT: GenerationError,
    Stage.METADATA: MetadataGenerationError,
    Stage.ATTRIBUTES: AttributeGenerationError,
    Stage.IMAGE: ImageGenerationError,
}


class SynthesisRequest(BaseModel):
    """One entity to synthesize, with its rules and placement."""

    kind: EntityKind
    prompt: str = Field(min_length=1)
    rules: Optional[KindRules] = None
    region: str = Field(min_length=1)
    x: int
    y: int
    context: str | None = None
    allow_placeholder_image: bool = False

    @model_validator(mode="after")
    def _check_rules(self) -> SynthesisRequest:
        if self.kind not in PLACEABLE_KINDS:
            raise ValueError(f"Cannot synthesize an entity of kind {self.kind.value!r}")
        if self.rules is None:
            self.rules = RULES_MODELS[self.kind]()
        elif self.rules.kind is not self.kind:
            raise ValueError(
                f"Rules for {self.rules.kind.value!r} given for a {self.kind.value!r} request"
            )
        return self


class EntityMetadata(BaseModel):
    """Validated output of the metadata stage."""

    name: str = Field(min_length=1)
    rarity: Rarity
    visual_description: str
    functional_description: str
    category: str = Field(min_length=1)
    purpose: str = "generic"

    @field_validator("rarity", mode="before")
    @classmethod
    def _normalize_rarity(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("purpose", mode="before")
    @classmethod
    def _default_purpose(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "generic"
        return value


class RegionDetails(BaseModel):
    name: str = Field(min_length=1)
    theme: str = ""
    biome: str = ""
    description: str = ""


class StageTiming(BaseModel):
    """Per-stage wall time in milliseconds."""

    context: float = 0.0
    metadata: float = 0.0
    attributes: float = 0.0
    image: float = 0.0

    @property
    def total(self) -> float:
        # attributes and image overlap, so only the slower one counts
        return self.context + self.metadata + max(self.attributes, self.image)


class SynthesisResult(BaseModel):
    entity: Entity
    new_attributes: dict[str, AttributeDefinition] = Field(default_factory=dict)
    timing: StageTiming = Field(default_factory=StageTiming)
    debug: dict[str, dict[str, Any]] = Field(default_factory=dict)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class EntitySynthesizer:
    """Runs the staged synthesis of items, NPCs, locations and regions."""

    def __init__(
        self,
        backend: GenerationBackend,
        taxonomies: Taxonomies | None = None,
        allocator: IdentifierAllocator | None = None,
        settings: Settings | None = None,
    ):
        self.backend = backend
        self.taxonomies = taxonomies or Taxonomies()
        self.allocator = allocator or IdentifierAllocator()
        self.settings = settings or backend.settings

    async def synthesize(self, request: SynthesisRequest) -> SynthesisResult:
        """Synthesize one entity.

        Raises:
            MetadataGenerationError: the metadata stage failed.
            SafetyBlockedError: the image was refused and no placeholder allowed.
            ImageGenerationError: the image stage failed otherwise.
        """
        kind = request.kind
        rules = request.rules
        taxonomy = self.taxonomies[kind]
        timing = StageTiming()
        debug: dict[str, dict[str, Any]] = {}

        for category in rules.categories:
            taxonomy.merge(category.attributes, category.name)

        logger.info("Synthesizing %s: %s", kind.value, request.prompt)

        # 1. Context narrative
        narrative = ""
        if request.context:
            narrative, timing.context = await self._guarded(
                Stage.CONTEXT, self._context(request, debug), fallback="",
            )

        # 2. Metadata
        categories = taxonomy.category_names() or list(DEFAULT_CATEGORIES[kind])
        metadata, timing.metadata = await self._guarded(
            Stage.METADATA, self._metadata(request, narrative, categories, debug),
        )
        entity_id = self.allocator.next(kind, metadata.category, metadata.name)

        # 3. Attributes and image in parallel
        attr_task = asyncio.ensure_future(self._guarded(
            Stage.ATTRIBUTES,
            self._attributes(request, metadata, debug),
            fallback=({}, {}),
        ))
        image_task = asyncio.ensure_future(
            self._guarded(Stage.IMAGE, self._image(request, metadata, debug)),
        )
        try:
            (attr_result, timing.attributes), (image_url, timing.image) = await asyncio.gather(
                attr_task, image_task,
            )
        except Exception:
            # An aborting stage takes its sibling down with it
            pending = [task for task in (attr_task, image_task) if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            raise
        attributes, discovered = attr_result

        if discovered:
            taxonomy.merge(discovered, metadata.category)

        # 4. Merge
        entity = ENTITY_MODELS[kind](
            id=entity_id,
            name=metadata.name,
            rarity=metadata.rarity,
            category=metadata.category,
            visual_description=metadata.visual_description,
            functional_description=metadata.functional_description,
            purpose=metadata.purpose,
            image_url=image_url,
            x=request.x,
            y=request.y,
            region=request.region,
            attributes=attributes,
        )

        logger.info(
            "Synthesized %s %s (%s, %d attributes, %d new) in %.0fms",
            kind.value, entity.id, entity.rarity.value,
            len(attributes), len(discovered), timing.total,
        )
        return SynthesisResult(
            entity=entity,
            new_attributes=discovered,
            timing=timing,
            debug=debug,
        )

    async def synthesize_region(
        self,
        prompt: str,
        rules: GameRules | BaseRules,
        region_x: int,
        region_y: int,
    ) -> Region:
        """Lightweight synthesis for a region: one structured call, no attributes or image."""
        request_text = REGION_PROMPT.format(
            historical_period=rules.historical_period,
            genre=rules.genre,
            prompt=prompt,
        )
        try:
            raw = await self.backend.generate_structured(
                request_text,
                REGION_SCHEMA,
                name="record_region",
                model=self.settings.MODEL_METADATA,
            )
            details = RegionDetails.model_validate(raw)
        except ValidationError as e:
            raise MetadataGenerationError(f"Region failed schema validation: {e}") from e
        except MetadataGenerationError:
            raise
        except GenerationError as e:
            raise MetadataGenerationError(f"Region generation failed: {e}") from e

        region = Region(
            id=self.allocator.next_region(details.name),
            name=details.name,
            region_x=region_x,
            region_y=region_y,
            theme=details.theme,
            biome=details.biome,
            description=details.description,
        )
        logger.info("Synthesized region %s at (%d, %d)", region.id, region_x, region_y)
        return region

    async def _guarded(
        self,
        stage: Stage,
        operation: Awaitable[T],
        fallback: Any = None,
    ) -> tuple[T, float]:
        """Await one stage and apply its policy. Returns (result, elapsed ms)."""
        started = time.perf_counter()
        try:
            result = await operation
        except Exception as e:
            if STAGE_POLICIES[stage] is StagePolicy.ABORT:
                error_type = _STAGE_ERRORS[stage]
                if isinstance(e, error_type):
                    raise
                raise error_type(f"{stage.value} stage failed: {e}") from e
            if isinstance(e, GenerationError):
                logger.warning("%s stage failed, continuing without it: %s", stage.value, e)
            else:
                logger.exception("Unexpected error in %s stage", stage.value)
            result = fallback
        return result, _elapsed_ms(started)

    async def _context(self, request: SynthesisRequest, debug: dict) -> str:
        prompt = CONTEXT_PROMPT.format(kind=request.kind.value, context=request.context)
        debug[Stage.CONTEXT.value] = {"prompt": prompt}
        narrative = await self.backend.generate_text(
            prompt, model=self.settings.MODEL_CONTEXT, max_tokens=400,
        )
        debug[Stage.CONTEXT.value]["response"] = narrative
        return narrative

    async def _metadata(
        self,
        request: SynthesisRequest,
        narrative: str,
        categories: list[str],
        debug: dict,
    ) -> EntityMetadata:
        rules = request.rules
        narrative_block = f"\nWorld narrative:\n{narrative}\n" if narrative else ""
        prompt = METADATA_PROMPT.format(
            kind=request.kind.value,
            historical_period=rules.historical_period,
            genre=rules.genre,
            narrative_block=narrative_block,
            prompt=request.prompt,
            rarities=", ".join(r.value for r in Rarity),
            categories=", ".join(categories),
        )
        debug[Stage.METADATA.value] = {"prompt": prompt, "categories": list(categories)}

        raw = await self.backend.generate_structured(
            prompt,
            metadata_schema(categories),
            name=f"record_{request.kind.value}_metadata",
            model=self.settings.MODEL_METADATA,
        )
        debug[Stage.METADATA.value]["response"] = raw

        try:
            metadata = EntityMetadata.model_validate(raw)
        except ValidationError as e:
            raise MetadataGenerationError(f"Metadata failed schema validation: {e}") from e
        if metadata.category not in categories:
            raise MetadataGenerationError(
                f"Category {metadata.category!r} is not one of {categories}"
            )
        return metadata

    async def _attributes(
        self,
        request: SynthesisRequest,
        metadata: EntityMetadata,
        debug: dict,
    ) -> tuple[dict[str, Attribute], dict[str, AttributeDefinition]]:
        rules = request.rules
        known = {d.name: d for d in self.taxonomies[request.kind].lookup(metadata.category)}

        library_block = ""
        if known:
            library_block = LIBRARY_BLOCK.format(
                category=metadata.category,
                attribute_list=format_attribute_list(known.values()),
                kind=request.kind.value,
            )
        prompt = ATTRIBUTES_PROMPT.format(
            kind=request.kind.value,
            name=metadata.name,
            rarity=metadata.rarity.value,
            category=metadata.category,
            historical_period=rules.historical_period,
            description=metadata.functional_description or metadata.visual_description,
            library_block=library_block,
            genre=rules.genre,
            types=attribute_types_text(),
        )
        debug[Stage.ATTRIBUTES.value] = {"prompt": prompt, "known": list(known)}

        raw = await self.backend.generate_json(prompt, model=self.settings.MODEL_ATTRIBUTES)
        payload = raw.get("attributes")
        if not isinstance(payload, dict):
            raise AttributeGenerationError("Response has no 'attributes' object")

        attributes: dict[str, Attribute] = {}
        discovered: dict[str, AttributeDefinition] = {}
        for name, spec in payload.items():
            if name in RESERVED_ATTRIBUTE_NAMES:
                logger.debug("Ignoring reserved field '%s' returned as attribute", name)
                continue
            attribute, complete = self._build_attribute(name, spec, known.get(name))
            if attribute is None:
                continue
            attributes[name] = attribute
            if name not in known and complete:
                discovered[name] = AttributeDefinition.from_attribute(name, attribute)

        debug[Stage.ATTRIBUTES.value]["response"] = payload
        debug[Stage.ATTRIBUTES.value]["discovered"] = list(discovered)
        return attributes, discovered

    @staticmethod
    def _build_attribute(
        name: str,
        spec: Any,
        known: AttributeDefinition | None,
    ) -> tuple[Attribute | None, bool]:
        """Build a four-field Attribute from a raw response entry.

        Returns (attribute, complete). ``complete`` is False when any field
        had to be filled in; such attributes are kept on the entity but never
        catalogued. Entries without a value are dropped.
        """
        if not isinstance(spec, dict):
            spec = {"value": spec}

        value = spec.get("value")
        if value is None:
            logger.warning("Attribute '%s' has no value, dropping it", name)
            return None, False

        missing = [f for f in ("type", "description", "reference") if _is_blank(spec.get(f))]
        if missing:
            logger.warning("Attribute '%s' is missing %s", name, ", ".join(missing))

        attr_type = _parse_type(spec.get("type"))
        if attr_type is None:
            attr_type = known.type if known else infer_attribute_type(value)
        description = spec.get("description")
        if _is_blank(description):
            description = known.description if known else name.replace("_", " ").capitalize()
        reference = spec.get("reference")
        if _is_blank(reference):
            reference = known.reference if known else MISSING_REFERENCE

        try:
            attribute = Attribute(
                value=value,
                type=attr_type,
                description=str(description),
                reference=str(reference),
            )
        except ValidationError as e:
            logger.warning("Attribute '%s' dropped: %s", name, e.errors()[0]["msg"])
            return None, False
        return attribute, not missing

    async def _image(
        self,
        request: SynthesisRequest,
        metadata: EntityMetadata,
        debug: dict,
    ) -> str:
        rules = request.rules
        fields = {
            "art_style": rules.art_style,
            "name": metadata.name,
            "rarity": metadata.rarity.value,
            "category": metadata.category,
            "historical_period": rules.historical_period,
            "visual_description": metadata.visual_description,
            "kind": request.kind.value,
        }
        prompt = IMAGE_PROMPTS[request.kind].format(**fields)
        debug[Stage.IMAGE.value] = {"prompts": [], "blocked": []}

        blocked: SafetyBlockedError | None = None
        for attempt in range(self.settings.IMAGE_SAFETY_RETRIES + 1):
            debug[Stage.IMAGE.value]["prompts"].append(prompt)
            try:
                image = await self.backend.generate_image(prompt)
                debug[Stage.IMAGE.value]["mime_type"] = image.mime_type
                return image.data_url
            except SafetyBlockedError as e:
                blocked = e
                debug[Stage.IMAGE.value]["blocked"].append(e.reason)
                logger.warning(
                    "Image for '%s' blocked (%s), attempt %d",
                    metadata.name, e.reason, attempt + 1,
                )
                prompt = SOFTENED_IMAGE_PROMPT.format(**fields)

        if request.allow_placeholder_image:
            logger.warning("Using placeholder image for '%s'", metadata.name)
            debug[Stage.IMAGE.value]["placeholder"] = True
            return PLACEHOLDER_IMAGE_URL
        raise blocked


def _parse_type(raw: Any) -> AttributeType | None:
    if not isinstance(raw, str) or not raw.strip():
        return None
    text = raw.strip().lower()
    try:
        return AttributeType(text)
    except ValueError:
        return _TYPE_ALIASES.get(text)
