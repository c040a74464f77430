"""Shared fixtures: a scripted in-process backend and factory helpers."""

from __future__ import annotations

import asyncio
import re
from typing import Any, Callable

import pytest

from config.settings import Settings
from core.entity import Attribute, AttributeType, Item, Location, Npc, Rarity
from core.errors import GenerationError, SafetyBlockedError
from creation.backend import GeneratedImage, GenerationBackend
from creation.identifiers import IdentifierAllocator
from creation.synthesizer import EntitySynthesizer
from creation.taxonomy import Taxonomies
from world.registry import SpatialRegistry

_USER_REQUEST = re.compile(r"User request: (.+)")

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


def make_settings(**overrides: Any) -> Settings:
    values = {
        "ANTHROPIC_API_KEY": "test",
        "GEMINI_API_KEY": "test",
        "IMAGE_SAFETY_RETRIES": 1,
        "MAX_CONCURRENT_SYNTHESES": 4,
        "SYNTHESIS_TIMEOUT": 0.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeBackend(GenerationBackend):
    """Scripted backend. No network; every response is decided here.

    - metadata: name from the user request, first category of the enum
      unless ``category`` is set, rarity ``rarity``
    - attributes: ``attributes`` is returned under an "attributes" key
    - image: PNG bytes, after ``safety_blocks`` SafetyBlockedErrors
    - any request whose user prompt contains a string in ``fail_prompts``
      fails with GenerationError
    """

    def __init__(self, settings: Settings | None = None):
        super().__init__(settings=settings or make_settings())
        self.category: str | None = None
        self.rarity = "rare"
        self.attributes: dict[str, Any] = {}
        self.attributes_error: Exception | None = None
        self.safety_blocks = 0
        self.image_error: Exception | None = None
        self.fail_prompts: set[str] = set()
        self.text = "A cold wind blows over the moors."
        self.structured_handlers: dict[str, Callable[[str, dict], dict]] = {}
        self.delay = 0.0

        self.calls: list[tuple[str, str]] = []
        self.image_prompts: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def _enter(self, method: str, label: str) -> None:
        self.calls.append((method, label))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1

    async def generate_text(self, prompt, *, model=None, max_tokens=1024, system=None):
        await self._enter("text", prompt[:40])
        return self.text

    async def generate_json(self, prompt, *, model=None, max_tokens=2048):
        await self._enter("json", prompt[:40])
        if self.attributes_error is not None:
            raise self.attributes_error
        return {"attributes": dict(self.attributes)}

    async def generate_structured(
        self, prompt, schema, *, name, description="", model=None, max_tokens=2048,
    ):
        await self._enter("structured", name)
        match = _USER_REQUEST.search(prompt)
        user_request = match.group(1).strip() if match else ""
        if any(failing in user_request for failing in self.fail_prompts):
            raise GenerationError(f"scripted failure for {user_request!r}")

        if name in self.structured_handlers:
            return self.structured_handlers[name](prompt, schema)
        if name == "record_region":
            return {
                "name": user_request.split(".")[0].title(),
                "theme": "feudal",
                "biome": "moorland",
                "description": "Windswept hills and stone villages.",
            }

        categories = schema["properties"]["category"]["enum"]
        return {
            "name": user_request.title(),
            "rarity": self.rarity,
            "visual_description": f"A plain {user_request}.",
            "functional_description": f"Useful as a {user_request}.",
            "category": self.category or categories[0],
            "purpose": "quest",
        }

    async def generate_image(self, prompt):
        self.image_prompts.append(prompt)
        await self._enter("image", prompt[:40])
        if self.image_error is not None:
            raise self.image_error
        if self.safety_blocks > 0:
            self.safety_blocks -= 1
            raise SafetyBlockedError("blocked", reason="IMAGE_SAFETY")
        return GeneratedImage(data=PNG_BYTES, mime_type="image/png")


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def backend(settings) -> FakeBackend:
    return FakeBackend(settings)


@pytest.fixture
def taxonomies() -> Taxonomies:
    return Taxonomies()


@pytest.fixture
def allocator() -> IdentifierAllocator:
    return IdentifierAllocator()


@pytest.fixture
def synthesizer(backend, taxonomies, allocator, settings) -> EntitySynthesizer:
    return EntitySynthesizer(backend, taxonomies, allocator, settings)


@pytest.fixture
def registry() -> SpatialRegistry:
    return SpatialRegistry()


def attribute(value: Any = 10, attr_type: AttributeType = AttributeType.INTEGER) -> Attribute:
    return Attribute(
        value=value,
        type=attr_type,
        description="Damage dealt in combat",
        reference="10=dagger, 40=sword",
    )


def make_item(entity_id: str = "ite_sword_wea_001", region: str = "r1", x: int = 5, y: int = 5, **kw) -> Item:
    return Item(
        id=entity_id,
        name=kw.pop("name", "Sword"),
        rarity=kw.pop("rarity", Rarity.COMMON),
        category=kw.pop("category", "weapon"),
        region=region,
        x=x,
        y=y,
        **kw,
    )


def make_npc(entity_id: str = "npc_guard_gua_001", region: str = "r1", x: int = 5, y: int = 5) -> Npc:
    return Npc(
        id=entity_id, name="Guard", rarity=Rarity.COMMON, category="guard",
        region=region, x=x, y=y,
    )


def make_location(entity_id: str = "loc_inn_bui_001", region: str = "r1", x: int = 5, y: int = 5) -> Location:
    return Location(
        id=entity_id, name="Inn", rarity=Rarity.RARE, category="building",
        region=region, x=x, y=y,
    )
