"""Prompt templates and JSON schemas for every generation stage."""

from __future__ import annotations

from typing import Any, Iterable

from core.entity import AttributeType, EntityKind, Rarity
from core.rules import AttributeDefinition

# Fallback category enum when a kind's taxonomy is still empty
DEFAULT_CATEGORIES: dict[EntityKind, list[str]] = {
    EntityKind.ITEM: ["weapon", "armor", "consumable", "tool", "food", "key"],
    EntityKind.NPC: ["merchant", "guard", "quest_giver", "bandit", "villager"],
    EntityKind.LOCATION: ["town", "dungeon", "building", "wilderness"],
}

# Field names reserved for metadata; never accepted as attributes
RESERVED_ATTRIBUTE_NAMES = frozenset({
    "id", "name", "rarity", "category", "description",
    "visual_description", "functional_description", "purpose",
})

CONTEXT_PROMPT = """Summarize the following world context into a short narrative (3-5 sentences) \
that a game content designer can use to keep a new {kind} consistent with the world.
Focus on setting, tone, and anything that constrains what the {kind} could plausibly be.

World context:
{context}

Return only the narrative, no headings."""

METADATA_PROMPT = """You are a historically accurate game {kind} generator for a game set in this \
historical period: {historical_period}.
Genre: {genre}

If the request names a generic {kind} that is not specific to this period, generate a generic \
{kind} appropriate for the period. If the request names a specific {kind} or feature, keep the \
exact name and describe the feature in the descriptions.
{narrative_block}
User request: {prompt}

Fill in every field:
- name: the display name
- rarity: one of {rarities}
- visual_description: what it looks like, for an illustrator
- functional_description: what it does or why it matters in play
- category: one of {categories}
- purpose: its role in the game, one or two words (e.g. "quest", "trade", "combat")"""

ATTRIBUTES_PROMPT = """You are a historical game designer creating attributes for a {kind}.

Name: {name}
Rarity/Significance: {rarity}
Category: {category}
Historical setting: {historical_period}
Description: {description}
{library_block}
Attributes are read by another language model that balances the game and decides whether \
actions succeed, so every attribute needs an implied game mechanic. A numeric attribute needs \
a reference scale with concrete examples (e.g. "10=dagger, 40=sword, 80=greatsword"); a textual \
one needs a clear ordinal scale (e.g. "weak" to "strong").
The genre of this game is {genre}. Do not introduce attributes irrelevant to the genre, but new \
attributes are encouraged when they are relevant.

Return a JSON object with ONE field, "attributes", mapping attribute name to an object with ALL \
FOUR fields:
- value: the value for this specific {kind}
- type: one of {types}
- description: what the attribute represents
- reference: concrete examples showing what different values mean

For attributes from the library above, copy type, description and reference and choose a value.
For new attributes, provide all four fields.

Example:
{{
  "attributes": {{
    "damage": {{
      "value": 45,
      "type": "integer",
      "description": "Damage dealt in combat",
      "reference": "10=dagger, 40=sword, 80=greatsword, 100=legendary blade"
    }}
  }}
}}

Do NOT include id, name, rarity, description or category as attributes.
Return ONLY valid JSON."""

LIBRARY_BLOCK = """
Previously catalogued attributes for "{category}" (the -> line is the calibration reference):
{attribute_list}

1. Review the available attributes above.
2. Select the ones relevant to this {kind}.
3. Reuse their references unchanged.
4. Create a calibration reference for any new attribute.
"""

IMAGE_PROMPTS: dict[EntityKind, str] = {
    EntityKind.ITEM: """Generate a game item sprite/icon in {art_style} style.

Item name: {name}
Rarity/Significance: {rarity}
Category: {category}
Historical setting: {historical_period}

Description:
{visual_description}

Style requirements:
- {art_style} art style
- Square format (1:1 aspect ratio)
- Item centered on a neutral background
- Rarity should influence visual detail and importance ({rarity})
- Clear, iconic representation suitable for inventory display
- No text in the image""",
    EntityKind.NPC: """Generate a game character portrait in {art_style} style.

NPC name: {name}
Rarity/Significance: {rarity}
Category: {category}
Historical setting: {historical_period}

Description:
{visual_description}

Style requirements:
- {art_style} art style
- Character portrait aesthetic
- Rarity should influence visual quality ({rarity})
- Clear, expressive face and period-appropriate clothing
- The character centered in the image
- No text in the image""",
    EntityKind.LOCATION: """Generate a game location scene in {art_style} style.

Location name: {name}
Rarity/Significance: {rarity}
Category: {category}
Historical setting: {historical_period}

Description:
{visual_description}

Style requirements:
- {art_style} art style
- Environment/landscape scene aesthetic
- Rarity should influence visual quality ({rarity})
- Period-appropriate architecture and setting
- The location well-framed in the image
- No text in the image""",
}

SOFTENED_IMAGE_PROMPT = """Generate a family-friendly, non-violent {art_style} illustration of a \
{kind} for a historical game.

Subject: {name} ({category}, {rarity})
Setting: {historical_period}

Depict the subject calmly and without blood, injury, weapons in use, or distressing detail. \
No text in the image."""

REGION_PROMPT = """You are generating a region for a historical game set in {historical_period}.
Genre: {genre}

User request: {prompt}

Generate a region with:
- name: a real or historically appropriate region name
- theme: cultural/political theme of the region
- biome: geographical environment (e.g. temperate forest, desert, mountains, urban, coastal)
- description: 2-3 sentences on the region's geography, culture and historical significance

Be historically accurate and specific to the period."""

PLANNER_PROMPT = """You are a game design orchestrator setting up the start of a historical \
role-playing game. Other generators will later create content by reading your design notes and \
the attribute categories you define, so your output must keep them engaging, historically \
accurate, consistent and balanced.

Character: {character_name}
Description: {description}
Art style: {art_style}

1. scratchpad (plain text, 500-800 words): title and setting, historical period, main goal, \
progression system, essential entities, 4-6 core mechanics, what makes it fun, notes on \
historical accuracy, and genre.

2. rules:
   - historical_period and genre
   - art_style: exactly "{art_style}"
   - item_categories (4-6), npc_categories (3-5), location_categories (3-5). Each list includes \
a "common" category with universal attributes. Every category has 2-3 starting attributes with \
name, type ({types}), description and reference.

3. entities:
   - regions: 3-5 regions at one consistent scale, fitting a ~5x5 integer grid \
(region_x, region_y). Adjacent regions are 1 unit apart; barriers leave gaps.
   - locations: 4-6, npcs: 3-5, items: 3-5. Each has a detailed generation prompt, the name of \
the region it belongs to, integer x and y in kilometres within that region (the most important \
place near 0, 0), and a rationale explaining its significance. Each NPC is exactly one person.

Historical accuracy is paramount: use real dates, people, places and events."""


def format_attribute_list(definitions: Iterable[AttributeDefinition]) -> str:
    return "\n".join(
        f"- {d.name} ({d.type.value}): {d.description}\n  -> {d.reference}"
        for d in definitions
    )


def metadata_schema(categories: list[str]) -> dict[str, Any]:
    """Schema for the metadata stage; ``categories`` becomes a closed enum."""
    return {
        "type": "object",
        "properties": {
            "name": {"type": "string"},
            "rarity": {"type": "string", "enum": [r.value for r in Rarity]},
            "visual_description": {"type": "string"},
            "functional_description": {"type": "string"},
            "category": {"type": "string", "enum": list(categories)},
            "purpose": {"type": "string"},
        },
        "required": [
            "name", "rarity", "visual_description",
            "functional_description", "category", "purpose",
        ],
    }


REGION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "theme": {"type": "string"},
        "biome": {"type": "string"},
        "description": {"type": "string"},
    },
    "required": ["name", "theme", "biome", "description"],
}

_ATTRIBUTE_DEFINITION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "type": {"type": "string", "enum": [t.value for t in AttributeType]},
        "description": {"type": "string"},
        "reference": {"type": "string"},
    },
    "required": ["name", "type", "description", "reference"],
}

_CATEGORY_LIST_SCHEMA: dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "name": {"type": "string"},
            "attributes": {"type": "array", "items": _ATTRIBUTE_DEFINITION_SCHEMA},
        },
        "required": ["name", "attributes"],
    },
}

_ENTITY_SPEC_LIST_SCHEMA: dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "prompt": {"type": "string"},
            "region": {"type": "string"},
            "x": {"type": "integer"},
            "y": {"type": "integer"},
            "rationale": {"type": "string"},
        },
        "required": ["prompt", "region", "x", "y", "rationale"],
    },
}

PLAN_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "scratchpad": {"type": "string"},
        "rules": {
            "type": "object",
            "properties": {
                "art_style": {"type": "string"},
                "historical_period": {"type": "string"},
                "genre": {"type": "string"},
                "item_categories": _CATEGORY_LIST_SCHEMA,
                "npc_categories": _CATEGORY_LIST_SCHEMA,
                "location_categories": _CATEGORY_LIST_SCHEMA,
            },
            "required": [
                "art_style", "historical_period", "genre",
                "item_categories", "npc_categories", "location_categories",
            ],
        },
        "entities": {
            "type": "object",
            "properties": {
                "regions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "name": {"type": "string"},
                            "theme": {"type": "string"},
                            "biome": {"type": "string"},
                            "description": {"type": "string"},
                            "region_x": {"type": "integer"},
                            "region_y": {"type": "integer"},
                        },
                        "required": [
                            "name", "theme", "biome", "description",
                            "region_x", "region_y",
                        ],
                    },
                },
                "locations": _ENTITY_SPEC_LIST_SCHEMA,
                "npcs": _ENTITY_SPEC_LIST_SCHEMA,
                "items": _ENTITY_SPEC_LIST_SCHEMA,
            },
            "required": ["regions", "locations", "npcs", "items"],
        },
    },
    "required": ["scratchpad", "rules", "entities"],
}


def attribute_types_text() -> str:
    return ", ".join(t.value for t in AttributeType)
