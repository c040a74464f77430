"""Tests for the entity and attribute models."""

import pytest
from pydantic import ValidationError

from core.entity import (
    Attribute,
    AttributeType,
    EntityKind,
    Item,
    Rarity,
    coerce_attribute_value,
    infer_attribute_type,
)
from core.rules import AttributeDefinition, GameRules, LocationRules, NpcRules


def test_rarity_is_ordered():
    assert Rarity.COMMON < Rarity.RARE < Rarity.EPIC < Rarity.LEGENDARY
    assert Rarity.LEGENDARY >= Rarity.EPIC
    assert max([Rarity.RARE, Rarity.LEGENDARY, Rarity.COMMON]) is Rarity.LEGENDARY
    assert Rarity("epic").rank == 2


@pytest.mark.parametrize("value,attr_type,expected", [
    (0, AttributeType.INTEGER, 0),
    ("12", AttributeType.INTEGER, 12),
    (3.0, AttributeType.INTEGER, 3),
    ("2.5", AttributeType.NUMBER, 2.5),
    (False, AttributeType.BOOLEAN, False),
    ("yes", AttributeType.BOOLEAN, True),
    (("a", "b"), AttributeType.ARRAY, ["a", "b"]),
    (7, AttributeType.STRING, "7"),
])
def test_coercion(value, attr_type, expected):
    assert coerce_attribute_value(value, attr_type) == expected


@pytest.mark.parametrize("value,attr_type", [
    (None, AttributeType.STRING),
    (True, AttributeType.INTEGER),
    (2.5, AttributeType.INTEGER),
    ("sharp", AttributeType.NUMBER),
    ("maybe", AttributeType.BOOLEAN),
    ("a,b", AttributeType.ARRAY),
    ([], AttributeType.ARRAY),
    ("nan", AttributeType.NUMBER),
    ("inf", AttributeType.NUMBER),
    (float("-inf"), AttributeType.NUMBER),
    ("   ", AttributeType.STRING),
])
def test_coercion_rejects(value, attr_type):
    with pytest.raises(ValueError):
        coerce_attribute_value(value, attr_type)


def test_infer_attribute_type():
    assert infer_attribute_type(True) is AttributeType.BOOLEAN
    assert infer_attribute_type(3) is AttributeType.INTEGER
    assert infer_attribute_type(0.5) is AttributeType.NUMBER
    assert infer_attribute_type(["x"]) is AttributeType.ARRAY
    assert infer_attribute_type("steel") is AttributeType.STRING


def test_attribute_requires_all_four_fields():
    with pytest.raises(ValidationError):
        Attribute(value=5, type="integer", description="", reference="1=low")
    with pytest.raises(ValidationError):
        Attribute(value=5, type="integer", description="Damage")
    with pytest.raises(ValidationError):
        Attribute(value=None, type="integer", description="Damage", reference="1=low")


def test_attribute_coerces_value():
    attr = Attribute(value="40", type="integer", description="Damage", reference="10=dagger")
    assert attr.value == 40
    assert attr.type is AttributeType.INTEGER


def test_definition_from_attribute():
    attr = Attribute(value=4, type="integer", description="Weight", reference="1=light")
    definition = AttributeDefinition.from_attribute("weight", attr)
    assert definition.model_dump() == {
        "name": "weight", "type": AttributeType.INTEGER,
        "description": "Weight", "reference": "1=light",
    }


def test_entity_requires_placement():
    with pytest.raises(ValidationError):
        Item(id="i", name="Sword", rarity="common", category="weapon", region="", x=0, y=0)
    with pytest.raises(ValidationError):
        Item(id="i", name="Sword", rarity="common", category="weapon", region="r1", x=None, y=0)


def test_entity_defaults_and_bucket_key():
    item = Item(id="i", name="Sword", rarity="rare", category="weapon", region="r1", x=2, y=3)
    assert item.kind is EntityKind.ITEM
    assert item.purpose == "generic"
    assert item.bucket_key == ("r1", 2, 3)


def test_rules_project_per_kind():
    rules = GameRules(art_style="woodcut", historical_period="Tudor England")
    npc_rules = rules.for_kind(EntityKind.NPC)
    assert isinstance(npc_rules, NpcRules)
    assert npc_rules.kind is EntityKind.NPC
    assert npc_rules.art_style == "woodcut"
    assert isinstance(rules.for_kind(EntityKind.LOCATION), LocationRules)
