"""WorldPlanner — turns a character pitch into rules and a world specification."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, ValidationError

from config.settings import Settings
from core.errors import GenerationError, PlanningError
from core.rules import GameRules
from creation.backend import GenerationBackend
from creation.prompts import PLAN_SCHEMA, PLANNER_PROMPT, attribute_types_text
from world.specification import WorldSpecification

logger = logging.getLogger(__name__)


class WorldPlan(BaseModel):
    """Design notes, rule set and the entities to generate."""

    scratchpad: str = ""
    rules: GameRules = Field(default_factory=GameRules)
    specification: WorldSpecification = Field(default_factory=WorldSpecification)


class WorldPlanner:
    def __init__(self, backend: GenerationBackend, settings: Settings | None = None):
        self.backend = backend
        self.settings = settings or backend.settings

    async def plan(
        self,
        character_name: str,
        description: str,
        art_style: str | None = None,
    ) -> WorldPlan:
        """Ask the planning model for a complete world plan.

        The user's art style is kept verbatim even if the model rewrites it.
        Raises PlanningError when the call fails or the plan does not validate.
        """
        art_style = art_style or self.settings.DEFAULT_ART_STYLE
        prompt = PLANNER_PROMPT.format(
            character_name=character_name,
            description=description,
            art_style=art_style,
            types=attribute_types_text(),
        )

        logger.info("Planning world for %s", character_name)
        try:
            raw = await self.backend.generate_structured(
                prompt,
                PLAN_SCHEMA,
                name="record_world_plan",
                description="Record the complete game configuration.",
                model=self.settings.MODEL_PLANNER,
                max_tokens=8000,
            )
        except GenerationError as e:
            raise PlanningError(f"World planning call failed: {e}") from e

        try:
            rules = GameRules.model_validate(raw.get("rules") or {})
            specification = WorldSpecification.model_validate(raw.get("entities") or {})
        except ValidationError as e:
            raise PlanningError(f"World plan failed validation: {e}") from e

        rules = rules.model_copy(update={"art_style": art_style})
        plan = WorldPlan(
            scratchpad=str(raw.get("scratchpad") or ""),
            rules=rules,
            specification=specification,
        )
        logger.info(
            "Planned world '%s': %d regions, %d locations, %d npcs, %d items",
            rules.historical_period,
            len(specification.regions), len(specification.locations),
            len(specification.npcs), len(specification.items),
        )
        return plan
