"""World system — specification, spatial registry, timeline, orchestrator, planner."""

from world.orchestrator import GeneratedWorld, GenerationFailure, WorldOrchestrator
from world.planner import WorldPlan, WorldPlanner
from world.registry import BucketContents, SpatialRegistry
from world.specification import EntitySpec, RegionSpec, WorldSpecification
from world.timeline import Timeline, TimelineEntry, build_tags

__all__ = [
    "BucketContents",
    "EntitySpec",
    "GeneratedWorld",
    "GenerationFailure",
    "RegionSpec",
    "SpatialRegistry",
    "Timeline",
    "TimelineEntry",
    "WorldOrchestrator",
    "WorldPlan",
    "WorldPlanner",
    "WorldSpecification",
    "build_tags",
]
