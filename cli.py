"""CLI entry point: synthesize entities and worlds from the terminal via Rich.

Usage:
  python cli.py item "iron shortsword"                 # One item
  python cli.py npc "a tired gate guard" --region region_york_001 --x 3 --y 4
  python cli.py location "a roadside shrine" --placeholder
  python cli.py region "the Yorkshire dales" --grid-x 1 --grid-y 0
  python cli.py plan "Joan of Arc" "Lift the siege of Orleans" --out data/plan.json
  python cli.py build data/plan.json --context         # Build the planned world
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config.settings import Settings
from core.entity import Entity, EntityKind, Region
from core.errors import GenerationError
from core.rules import GameRules
from core.token_tracker import TokenTracker
from creation.backend import GenerationBackend
from creation.identifiers import IdentifierAllocator
from creation.synthesizer import EntitySynthesizer, SynthesisRequest
from creation.taxonomy import Taxonomies
from world.orchestrator import GenerationFailure, WorldOrchestrator
from world.planner import WorldPlan, WorldPlanner
from world.registry import SpatialRegistry

console = Console()
logger = logging.getLogger(__name__)


def build_rules(args, settings: Settings) -> GameRules:
    return GameRules(
        art_style=args.style or settings.DEFAULT_ART_STYLE,
        historical_period=args.period or settings.DEFAULT_HISTORICAL_PERIOD,
        genre=args.genre or settings.DEFAULT_GENRE,
    )


def build_synthesizer(
    settings: Settings,
    rules: GameRules | None = None,
) -> tuple[EntitySynthesizer, TokenTracker]:
    tracker = TokenTracker()
    backend = GenerationBackend(settings=settings, tracker=tracker)
    taxonomies = Taxonomies.from_rules(rules) if rules else Taxonomies()
    synthesizer = EntitySynthesizer(
        backend,
        taxonomies=taxonomies,
        allocator=IdentifierAllocator(),
        settings=settings,
    )
    return synthesizer, tracker


def print_entity(entity: Entity) -> None:
    image = entity.image_url
    if len(image) > 60:
        image = image[:57] + "..."
    console.print(Panel(
        f"[bold]{entity.name}[/] [dim]({entity.id})[/]\n"
        f"Rarity: {entity.rarity.value}   Category: {entity.category}   "
        f"Purpose: {entity.purpose}\n"
        f"Placement: {entity.region} ({entity.x}, {entity.y})\n\n"
        f"[italic]{entity.visual_description}[/]\n\n"
        f"{entity.functional_description}\n\n"
        f"[dim]Image: {image}[/]",
        title=entity.kind.value.upper(),
        border_style="green",
    ))

    if entity.attributes:
        table = Table(title="Attributes")
        table.add_column("Name", style="bold")
        table.add_column("Value")
        table.add_column("Type", style="dim")
        table.add_column("Reference", style="dim")
        for name, attr in entity.attributes.items():
            table.add_row(name, str(attr.value), attr.type.value, attr.reference[:60])
        console.print(table)


def print_region(region: Region) -> None:
    console.print(Panel(
        f"[bold]{region.name}[/] [dim]({region.id})[/]\n"
        f"Grid: ({region.region_x}, {region.region_y})   "
        f"Theme: {region.theme}   Biome: {region.biome}\n\n"
        f"{region.description}",
        title="REGION",
        border_style="blue",
    ))


def print_usage(tracker: TokenTracker) -> None:
    console.print(f"[dim]{tracker.summary()}[/]")


async def cmd_entity(args, settings: Settings) -> None:
    """Synthesize a single item, NPC or location."""
    kind = EntityKind(args.command)
    rules = build_rules(args, settings)
    synthesizer, tracker = build_synthesizer(settings, rules)

    request = SynthesisRequest(
        kind=kind,
        prompt=args.prompt,
        rules=rules.for_kind(kind),
        region=args.region,
        x=args.x,
        y=args.y,
        context=args.context,
        allow_placeholder_image=args.placeholder,
    )

    try:
        with console.status(f"Synthesizing {kind.value}..."):
            result = await synthesizer.synthesize(request)
    except GenerationError as e:
        console.print(f"[red]{type(e).__name__}: {e}[/]")
        print_usage(tracker)
        sys.exit(1)

    print_entity(result.entity)
    if result.new_attributes:
        console.print(
            f"[yellow]New attributes catalogued for '{result.entity.category}':[/] "
            + ", ".join(result.new_attributes)
        )
    timing = result.timing
    console.print(
        f"[dim]context {timing.context:.0f}ms | metadata {timing.metadata:.0f}ms | "
        f"attributes {timing.attributes:.0f}ms | image {timing.image:.0f}ms | "
        f"total {timing.total:.0f}ms[/]"
    )
    print_usage(tracker)


async def cmd_region(args, settings: Settings) -> None:
    """Synthesize a single region."""
    rules = build_rules(args, settings)
    synthesizer, tracker = build_synthesizer(settings)

    try:
        with console.status("Synthesizing region..."):
            region = await synthesizer.synthesize_region(
                args.prompt, rules, args.grid_x, args.grid_y,
            )
    except GenerationError as e:
        console.print(f"[red]{type(e).__name__}: {e}[/]")
        print_usage(tracker)
        sys.exit(1)

    print_region(region)
    print_usage(tracker)


async def cmd_plan(args, settings: Settings) -> None:
    """Plan a world and write it as JSON."""
    tracker = TokenTracker()
    planner = WorldPlanner(GenerationBackend(settings=settings, tracker=tracker))

    try:
        with console.status("Planning world..."):
            plan = await planner.plan(args.character, args.description, args.style)
    except GenerationError as e:
        console.print(f"[red]{type(e).__name__}: {e}[/]")
        print_usage(tracker)
        sys.exit(1)

    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(plan.model_dump_json(indent=2), encoding="utf-8")

    spec = plan.specification
    console.print(Panel(
        plan.scratchpad[:1200] + ("..." if len(plan.scratchpad) > 1200 else ""),
        title=f"{plan.rules.historical_period} ({plan.rules.genre})",
        border_style="cyan",
    ))
    console.print(
        f"[green]Plan written to {out}[/]: {len(spec.regions)} regions, "
        f"{len(spec.locations)} locations, {len(spec.npcs)} NPCs, {len(spec.items)} items"
    )
    print_usage(tracker)


async def cmd_build(args, settings: Settings) -> None:
    """Build a world from a plan file and print the registry contents."""
    path = Path(args.plan_file)
    if not path.exists():
        console.print(f"[red]Plan file not found: {path}[/]")
        sys.exit(1)
    plan = WorldPlan.model_validate_json(path.read_text(encoding="utf-8"))

    synthesizer, tracker = build_synthesizer(settings, plan.rules)
    orchestrator = WorldOrchestrator(synthesizer, settings=settings)
    registry = SpatialRegistry()

    def report_failure(failure: GenerationFailure) -> None:
        console.print(
            f"[red]Failed {failure.kind.value}[/] {failure.prompt[:60]!r}: "
            f"{failure.error_type}: {failure.message}"
        )

    orchestrator.on_failure(report_failure)

    with console.status("Building world..."):
        world = await orchestrator.build(
            plan.specification, plan.rules,
            registry=registry, with_context=args.context,
        )

    for region in registry.regions():
        print_region(region)

    table = Table(title="World Registry")
    table.add_column("Kind")
    table.add_column("Id", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Rarity")
    table.add_column("Category")
    table.add_column("Position")
    for kind in (EntityKind.LOCATION, EntityKind.NPC, EntityKind.ITEM):
        for entity in registry.all(kind):
            table.add_row(
                kind.value, entity.id, entity.name, entity.rarity.value,
                entity.category, f"{entity.region} ({entity.x}, {entity.y})",
            )
    console.print(table)

    counts = world.counts()
    console.print(
        f"[green]Built in {world.elapsed_ms / 1000:.1f}s:[/] "
        + ", ".join(f"{n} {label}" for label, n in counts.items())
    )
    print_usage(tracker)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Worldsmith CLI",
        prog="python cli.py",
    )
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    def add_rule_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--style", help="Art style")
        p.add_argument("--period", help="Historical period")
        p.add_argument("--genre", help="Genre")

    # item / npc / location
    for kind in (EntityKind.ITEM, EntityKind.NPC, EntityKind.LOCATION):
        p_entity = subparsers.add_parser(kind.value, help=f"Synthesize one {kind.value}")
        p_entity.add_argument("prompt", help="What to create")
        p_entity.add_argument("--region", default="region_start", help="Region id")
        p_entity.add_argument("--x", type=int, default=0, help="X position")
        p_entity.add_argument("--y", type=int, default=0, help="Y position")
        p_entity.add_argument("--context", help="Ambient world context")
        p_entity.add_argument(
            "--placeholder", action="store_true",
            help="Accept a placeholder image if the image is safety-blocked",
        )
        add_rule_args(p_entity)

    # region
    p_region = subparsers.add_parser("region", help="Synthesize one region")
    p_region.add_argument("prompt", help="What to create")
    p_region.add_argument("--grid-x", type=int, default=0, help="Grid column")
    p_region.add_argument("--grid-y", type=int, default=0, help="Grid row")
    add_rule_args(p_region)

    # plan
    p_plan = subparsers.add_parser("plan", help="Plan a world from a character pitch")
    p_plan.add_argument("character", help="Character name")
    p_plan.add_argument("description", help="Game / character description")
    p_plan.add_argument("--style", help="Art style")
    p_plan.add_argument("--out", default="data/world_plan.json", help="Output file")

    # build
    p_build = subparsers.add_parser("build", help="Build a world from a plan file")
    p_build.add_argument("plan_file", help="Plan JSON written by 'plan'")
    p_build.add_argument(
        "--context", action="store_true",
        help="Feed region and rationale context into each synthesis",
    )

    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    settings = Settings()
    log_path = Path(settings.LOG_PATH)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        handlers=[
            logging.FileHandler(log_path, encoding="utf-8"),
        ],
    )

    if args.command is None:
        parser.print_help()
        return

    if not settings.ANTHROPIC_API_KEY:
        console.print("[red]ERROR: ANTHROPIC_API_KEY not found in .env file.[/]")
        console.print("Please create a .env file: ANTHROPIC_API_KEY=sk-...")
        sys.exit(1)
    if args.command not in ("plan", "region") and not settings.GEMINI_API_KEY:
        console.print("[red]ERROR: GEMINI_API_KEY not found in .env file.[/]")
        console.print("Image generation needs a .env entry: GEMINI_API_KEY=...")
        sys.exit(1)

    cmd_map = {
        "item": cmd_entity,
        "npc": cmd_entity,
        "location": cmd_entity,
        "region": cmd_region,
        "plan": cmd_plan,
        "build": cmd_build,
    }

    handler = cmd_map.get(args.command)
    if handler:
        logger.info("Running command: %s", args.command)
        asyncio.run(handler(args, settings))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
