"""Rule sets that steer generation: style, period, genre and seed categories.

Each entity kind gets its own rules type. They share ``BaseRules`` and are
discriminated by ``kind`` so a synthesizer can never be handed the NPC rules
while building an item.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from core.entity import Attribute, AttributeType, EntityKind


class AttributeDefinition(BaseModel):
    """A catalogued attribute: everything but the value."""

    name: str = Field(min_length=1)
    type: AttributeType
    description: str = Field(min_length=1)
    reference: str = Field(min_length=1)

    @classmethod
    def from_attribute(cls, name: str, attribute: Attribute) -> AttributeDefinition:
        return cls(
            name=name,
            type=attribute.type,
            description=attribute.description,
            reference=attribute.reference,
        )


class CategoryDefinition(BaseModel):
    name: str = Field(min_length=1)
    attributes: list[AttributeDefinition] = Field(default_factory=list)


class BaseRules(BaseModel):
    art_style: str = "historical illustration"
    historical_period: str = "Medieval Europe"
    genre: str = "historical role-playing game"
    categories: list[CategoryDefinition] = Field(default_factory=list)


class ItemRules(BaseRules):
    kind: Literal[EntityKind.ITEM] = EntityKind.ITEM


class NpcRules(BaseRules):
    kind: Literal[EntityKind.NPC] = EntityKind.NPC
    art_style: str = "historical portrait"


class LocationRules(BaseRules):
    kind: Literal[EntityKind.LOCATION] = EntityKind.LOCATION
    art_style: str = "historical landscape"


KindRules = Annotated[
    Union[ItemRules, NpcRules, LocationRules],
    Field(discriminator="kind"),
]

RULES_MODELS: dict[EntityKind, type[BaseRules]] = {
    EntityKind.ITEM: ItemRules,
    EntityKind.NPC: NpcRules,
    EntityKind.LOCATION: LocationRules,
}


class GameRules(BaseModel):
    """World-wide rule set as produced by the planner or written by hand."""

    art_style: str = "historical illustration"
    historical_period: str = "Medieval Europe"
    genre: str = "historical role-playing game"
    item_categories: list[CategoryDefinition] = Field(default_factory=list)
    npc_categories: list[CategoryDefinition] = Field(default_factory=list)
    location_categories: list[CategoryDefinition] = Field(default_factory=list)

    def categories_for(self, kind: EntityKind) -> list[CategoryDefinition]:
        return {
            EntityKind.ITEM: self.item_categories,
            EntityKind.NPC: self.npc_categories,
            EntityKind.LOCATION: self.location_categories,
        }[kind]

    def for_kind(self, kind: EntityKind) -> ItemRules | NpcRules | LocationRules:
        """Project the world rules onto one entity kind."""
        model = RULES_MODELS[kind]
        return model(
            art_style=self.art_style,
            historical_period=self.historical_period,
            genre=self.genre,
            categories=self.categories_for(kind),
        )
