"""World specification: which regions and entities to generate, and where."""

from __future__ import annotations

from pydantic import BaseModel, Field

from core.entity import EntityKind


class RegionSpec(BaseModel):
    """A region to synthesize at a cell of the coarse world grid."""

    name: str = Field(min_length=1)
    theme: str = ""
    biome: str = ""
    description: str = ""
    region_x: int
    region_y: int

    def to_prompt(self) -> str:
        parts = [self.name]
        if self.theme:
            parts.append(f"Theme: {self.theme}")
        if self.biome:
            parts.append(f"Biome: {self.biome}")
        if self.description:
            parts.append(self.description)
        return ". ".join(parts)


class EntitySpec(BaseModel):
    """An item, NPC or location to synthesize and place.

    ``region`` is either a region id or the name of a ``RegionSpec`` in the
    same specification; names are resolved to ids once regions exist.
    """

    prompt: str = Field(min_length=1)
    region: str = Field(min_length=1)
    x: int
    y: int
    rationale: str = ""


class WorldSpecification(BaseModel):
    regions: list[RegionSpec] = Field(default_factory=list)
    locations: list[EntitySpec] = Field(default_factory=list)
    npcs: list[EntitySpec] = Field(default_factory=list)
    items: list[EntitySpec] = Field(default_factory=list)

    def specs_for(self, kind: EntityKind) -> list[EntitySpec]:
        return {
            EntityKind.ITEM: self.items,
            EntityKind.NPC: self.npcs,
            EntityKind.LOCATION: self.locations,
        }[kind]

    def __len__(self) -> int:
        return len(self.regions) + len(self.locations) + len(self.npcs) + len(self.items)
