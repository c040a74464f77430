from core.entity import (
    Attribute,
    AttributeType,
    ChatMessage,
    Entity,
    EntityKind,
    Item,
    Location,
    Npc,
    Rarity,
    Region,
)
from core.rules import AttributeDefinition, CategoryDefinition, GameRules

__all__ = [
    "Attribute",
    "AttributeDefinition",
    "AttributeType",
    "CategoryDefinition",
    "ChatMessage",
    "Entity",
    "EntityKind",
    "GameRules",
    "Item",
    "Location",
    "Npc",
    "Rarity",
    "Region",
]
