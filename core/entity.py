"""World entities — items, NPCs, locations, regions and their attributes."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

# (region id, x, y)
BucketKey = tuple[str, int, int]


class Rarity(str, Enum):
    """Ordered significance tier."""

    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"

    @property
    def rank(self) -> int:
        return _RARITY_ORDER.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Rarity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Rarity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Rarity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Rarity):
            return NotImplemented
        return self.rank >= other.rank


_RARITY_ORDER = [Rarity.COMMON, Rarity.RARE, Rarity.EPIC, Rarity.LEGENDARY]


class AttributeType(str, Enum):
    INTEGER = "integer"
    NUMBER = "number"
    STRING = "string"
    BOOLEAN = "boolean"
    ARRAY = "array"


class EntityKind(str, Enum):
    ITEM = "item"
    NPC = "npc"
    LOCATION = "location"
    REGION = "region"

    @property
    def plural(self) -> str:
        return {
            EntityKind.ITEM: "items",
            EntityKind.NPC: "npcs",
            EntityKind.LOCATION: "locations",
            EntityKind.REGION: "regions",
        }[self]


# Kinds that live in spatial buckets
PLACEABLE_KINDS = (EntityKind.ITEM, EntityKind.NPC, EntityKind.LOCATION)

_TRUE_STRINGS = frozenset({"true", "yes", "1"})
_FALSE_STRINGS = frozenset({"false", "no", "0"})


def infer_attribute_type(value: Any) -> AttributeType:
    """Guess the declared type of a raw value."""
    if isinstance(value, bool):
        return AttributeType.BOOLEAN
    if isinstance(value, int):
        return AttributeType.INTEGER
    if isinstance(value, float):
        return AttributeType.NUMBER
    if isinstance(value, (list, tuple, set)):
        return AttributeType.ARRAY
    return AttributeType.STRING


def coerce_attribute_value(value: Any, attr_type: AttributeType) -> Any:
    """Coerce a raw value into its declared type.

    Raises ValueError when the value cannot represent the type.
    """
    if value is None:
        raise ValueError("attribute value is required")

    if attr_type is AttributeType.INTEGER:
        if isinstance(value, bool):
            raise ValueError(f"expected integer, got boolean {value!r}")
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str):
            number = float(value.strip())
            if number.is_integer():
                return int(number)
        raise ValueError(f"expected integer, got {value!r}")

    if attr_type is AttributeType.NUMBER:
        if isinstance(value, bool):
            raise ValueError(f"expected number, got boolean {value!r}")
        if isinstance(value, int):
            return value
        number = float(value.strip()) if isinstance(value, str) else value
        if not isinstance(number, float):
            raise ValueError(f"expected number, got {value!r}")
        if not math.isfinite(number):
            raise ValueError(f"number attribute must be finite, got {value!r}")
        return number

    if attr_type is AttributeType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in _TRUE_STRINGS:
            return True
        if isinstance(value, str) and value.strip().lower() in _FALSE_STRINGS:
            return False
        raise ValueError(f"expected boolean, got {value!r}")

    if attr_type is AttributeType.ARRAY:
        if isinstance(value, (list, tuple, set)):
            if not value:
                raise ValueError("array attribute value must not be empty")
            return list(value)
        raise ValueError(f"expected array, got {value!r}")

    text = value if isinstance(value, str) else str(value)
    if not text.strip():
        raise ValueError("string attribute value must not be empty")
    return text


class Attribute(BaseModel):
    """A typed game-balance value with its calibration reference.

    All four fields are always populated together.
    """

    value: Any
    type: AttributeType
    description: str = Field(min_length=1)
    reference: str = Field(min_length=1)

    @model_validator(mode="after")
    def _coerce_value(self) -> Attribute:
        self.value = coerce_attribute_value(self.value, self.type)
        return self


class ChatMessage(BaseModel):
    """One line of conversation with an NPC."""

    message_id: str = Field(default_factory=lambda: str(uuid4()))
    speaker: Literal["player", "npc"]
    text: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Entity(BaseModel):
    """Common shape of every synthesized, placeable entity."""

    kind: ClassVar[EntityKind]

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    rarity: Rarity
    category: str = Field(min_length=1)
    visual_description: str = ""
    functional_description: str = ""
    purpose: str = "generic"
    image_url: str = ""
    x: int
    y: int
    region: str = Field(min_length=1)
    attributes: dict[str, Attribute] = Field(default_factory=dict)

    @property
    def bucket_key(self) -> BucketKey:
        return (self.region, self.x, self.y)


class Item(Entity):
    kind: ClassVar[EntityKind] = EntityKind.ITEM


class Npc(Entity):
    kind: ClassVar[EntityKind] = EntityKind.NPC

    chat_history: list[ChatMessage] = Field(default_factory=list)


class Location(Entity):
    kind: ClassVar[EntityKind] = EntityKind.LOCATION


ENTITY_MODELS: dict[EntityKind, type[Entity]] = {
    EntityKind.ITEM: Item,
    EntityKind.NPC: Npc,
    EntityKind.LOCATION: Location,
}


class Region(BaseModel):
    """A large area on the coarse world map. Regions are buckets themselves."""

    id: str = Field(min_length=1)
    name: str
    region_x: int
    region_y: int
    theme: str = ""
    biome: str = ""
    description: str = ""
