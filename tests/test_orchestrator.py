"""Tests for WorldOrchestrator: batch isolation, concurrency cap, region resolution."""

import asyncio

import pytest

from core.entity import EntityKind, Region
from core.rules import GameRules
from creation.synthesizer import EntitySynthesizer
from tests.conftest import FakeBackend, make_settings
from world.orchestrator import GenerationFailure, WorldOrchestrator
from world.registry import SpatialRegistry
from world.specification import EntitySpec, RegionSpec, WorldSpecification
from world.timeline import Timeline


def spec_with(locations=(), npcs=(), items=(), regions=()) -> WorldSpecification:
    return WorldSpecification(
        regions=list(regions),
        locations=[EntitySpec(prompt=p, region="r1", x=i, y=0) for i, p in enumerate(locations)],
        npcs=[EntitySpec(prompt=p, region="r1", x=i, y=1) for i, p in enumerate(npcs)],
        items=[EntitySpec(prompt=p, region="r1", x=i, y=2) for i, p in enumerate(items)],
    )


@pytest.fixture
def orchestrator(synthesizer):
    return WorldOrchestrator(synthesizer)


async def test_scenario_d_one_failure_does_not_abort_batch(orchestrator, backend):
    backend.fail_prompts = {"cursed crypt"}
    failures: list[GenerationFailure] = []
    orchestrator.on_failure(failures.append)

    world = await orchestrator.build(
        spec_with(locations=["market square", "cursed crypt", "old mill"]), GameRules(),
    )

    assert len(world.locations) == 2
    assert {e.name for e in world.locations} == {"Market Square", "Old Mill"}
    assert len(failures) == 1
    assert failures[0].kind is EntityKind.LOCATION
    assert failures[0].prompt == "cursed crypt"
    assert failures[0].error_type == "MetadataGenerationError"
    assert world.failures == failures


async def test_async_failure_callback_is_awaited(orchestrator, backend):
    backend.fail_prompts = {"bad"}
    seen = []

    async def record(failure):
        await asyncio.sleep(0)
        seen.append(failure.prompt)

    orchestrator.on_failure(record)
    await orchestrator.build(spec_with(items=["bad"]), GameRules())
    assert seen == ["bad"]


async def test_broken_callback_does_not_break_batch(orchestrator, backend):
    backend.fail_prompts = {"bad"}

    def explode(failure):
        raise RuntimeError("callback bug")

    orchestrator.on_failure(explode)
    world = await orchestrator.build(spec_with(items=["bad", "good"]), GameRules())
    assert [e.name for e in world.items] == ["Good"]


async def test_all_groups_generated_and_registered(orchestrator):
    registry = SpatialRegistry()
    world = await orchestrator.build(
        spec_with(locations=["inn"], npcs=["smith", "priest"], items=["hammer"]),
        GameRules(),
        registry=registry,
    )

    assert world.counts() == {"regions": 0, "locations": 1, "npcs": 2, "items": 1, "failures": 0}
    assert len(registry) == 4
    assert [e.name for e in registry.entities_at("r1", 0, 1).npcs] == ["Smith"]
    registry.check_consistency()


async def test_entity_region_names_resolve_to_region_ids(synthesizer):
    orchestrator = WorldOrchestrator(synthesizer)
    spec = WorldSpecification(
        regions=[RegionSpec(name="Yorkshire", region_x=0, region_y=0)],
        npcs=[EntitySpec(prompt="shepherd", region="yorkshire", x=3, y=4)],
        items=[EntitySpec(prompt="crook", region="region_elsewhere_009", x=0, y=0)],
    )
    world = await orchestrator.build(spec, GameRules())

    assert [r.id for r in world.regions] == ["region_yorkshire_001"]
    assert world.npcs[0].region == "region_yorkshire_001"
    assert world.items[0].region == "region_elsewhere_009"


async def test_region_failure_is_recorded(orchestrator, backend):
    backend.fail_prompts = {"Atlantis"}
    spec = WorldSpecification(regions=[
        RegionSpec(name="Atlantis", region_x=0, region_y=0),
        RegionSpec(name="Wessex", region_x=1, region_y=0),
    ])
    world = await orchestrator.build(spec, GameRules())

    assert [r.name for r in world.regions] == ["Wessex"]
    assert world.failures[0].kind is EntityKind.REGION


async def test_concurrency_cap(settings):
    backend = FakeBackend(settings)
    backend.delay = 0.02
    orchestrator = WorldOrchestrator(EntitySynthesizer(backend), max_concurrency=2)

    world = await orchestrator.build(
        spec_with(items=[f"coin {i}" for i in range(6)], npcs=["a", "b"]), GameRules(),
    )

    assert len(world.items) == 6
    # two syntheses at most, each with up to two parallel stages
    assert backend.max_in_flight <= 4


async def test_synthesis_timeout_becomes_failure():
    backend = FakeBackend(make_settings(SYNTHESIS_TIMEOUT=0.01))
    backend.delay = 0.2
    orchestrator = WorldOrchestrator(EntitySynthesizer(backend))

    world = await orchestrator.build(spec_with(items=["slow coin"]), GameRules())

    assert world.items == []
    assert world.failures[0].error_type == "TimeoutError"


async def test_cancelling_build_cancels_syntheses(settings):
    backend = FakeBackend(settings)
    backend.delay = 10
    orchestrator = WorldOrchestrator(EntitySynthesizer(backend))

    task = asyncio.create_task(
        orchestrator.build(spec_with(items=["a", "b", "c"]), GameRules())
    )
    await asyncio.sleep(0.05)
    assert backend.in_flight > 0

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await asyncio.sleep(0)
    assert backend.in_flight == 0


async def test_generation_is_logged_to_timeline(synthesizer):
    timeline = Timeline()
    orchestrator = WorldOrchestrator(synthesizer, timeline=timeline)
    await orchestrator.build(spec_with(items=["lantern"]), GameRules())

    entries = timeline.entries(tag="type:generation")
    assert len(entries) == 1
    assert entries[0].tags[:4] == ["loc:r1:0:2", "type:generation", "llm:orchestratorLLM", "actor:ai"]
    assert "kind:item" in entries[0].tags


async def test_with_context_feeds_region_and_rationale(backend, synthesizer):
    orchestrator = WorldOrchestrator(synthesizer)
    spec = WorldSpecification(
        regions=[RegionSpec(name="Wessex", region_x=0, region_y=0)],
        items=[EntitySpec(prompt="charter", region="Wessex", x=0, y=0, rationale="Proves the claim")],
    )
    await orchestrator.build(spec, GameRules(), with_context=True)
    assert any(method == "text" for method, _ in backend.calls)


async def test_on_generated_reports_every_result(orchestrator):
    seen = []
    orchestrator.on_generated(lambda kind, result: seen.append(kind))
    await orchestrator.build(
        spec_with(items=["x"], regions=[RegionSpec(name="Kent", region_x=0, region_y=0)]),
        GameRules(),
    )
    assert sorted(k.value for k in seen) == ["item", "region"]


async def test_timeout_without_orchestrator_limit_keeps_message(settings, backend):
    class StalledSynthesizer(EntitySynthesizer):
        async def synthesize(self, request):
            raise asyncio.TimeoutError("image backend stalled")

    orchestrator = WorldOrchestrator(StalledSynthesizer(backend, settings=settings))

    world = await orchestrator.build(spec_with(items=["coin"]), GameRules())

    assert world.failures[0].error_type == "TimeoutError"
    assert world.failures[0].message == "image backend stalled"


async def test_already_registered_region_is_reported_not_raised(orchestrator):
    registry = SpatialRegistry()
    registry.add_region(Region(id="region_york_001", name="Old York", region_x=9, region_y=9))
    failures: list[GenerationFailure] = []
    orchestrator.on_failure(failures.append)

    world = await orchestrator.build(
        spec_with(items=["hammer"], regions=[RegionSpec(name="York", region_x=0, region_y=0)]),
        GameRules(),
        registry=registry,
    )

    assert world.regions == []
    assert [e.name for e in world.items] == ["Hammer"]
    assert [f.error_type for f in failures] == ["DuplicateEntityError"]
    assert failures[0].kind is EntityKind.REGION
    assert world.failures == failures
    assert registry.by_region_id("region_york_001").name == "Old York"
    assert len(registry.all(EntityKind.ITEM)) == 1
    registry.check_consistency()
