"""Timeline — chronological, tagged log of world events.

Entries carry standardized tags (``loc:``, ``type:``, ``llm:``, ``actor:``)
so later generators can filter the history relevant to a place or source.
Kept in memory only.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Iterable, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Known event types
EVENT_TYPES = frozenset({
    "dialogue", "generation", "entityChange", "turnProgression",
    "turnGoal", "playerAction", "statusChange", "none",
})

ORCHESTRATOR_LLM = "orchestratorLLM"

Actor = Literal["user", "ai", "none"]


class TimelineEntry(BaseModel):
    """One event on the timeline."""

    tags: list[str] = Field(default_factory=list)
    text: str
    turn: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def build_tags(
    location: str | None = None,
    event_type: str | None = None,
    llm_id: str | None = None,
    actor: Actor | None = None,
    extras: Iterable[str] = (),
) -> list[str]:
    """Standard tag list: ``[loc:…, type:…, llm:…, actor:…, *extras]``.

    Blank values become ``none``.
    """
    def _value(raw: str | None) -> str:
        return raw.strip() if raw and raw.strip() else "none"

    return [
        f"loc:{_value(location)}",
        f"type:{_value(event_type)}",
        f"llm:{_value(llm_id)}",
        f"actor:{actor or 'none'}",
        *extras,
    ]


def location_tag(region: str, x: int, y: int) -> str:
    return f"{region}:{x}:{y}"


class Timeline:
    """Append-only event log with a turn counter."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[TimelineEntry] = []
        self.turn = 0

    def log(self, tags: Iterable[str], text: str, turn: int | None = None) -> TimelineEntry:
        """Append an event. ``turn`` defaults to the current turn."""
        entry = TimelineEntry(
            tags=list(tags),
            text=text,
            turn=self.turn if turn is None else turn,
        )
        with self._lock:
            self._entries.append(entry)
        logger.debug("Timeline [%s] %s", " ".join(entry.tags), text)
        return entry

    def advance_turn(self) -> int:
        with self._lock:
            self.turn += 1
            return self.turn

    def entries(self, tag: str | None = None) -> list[TimelineEntry]:
        """All entries in order, optionally only those carrying ``tag``."""
        with self._lock:
            entries = list(self._entries)
        if tag is None:
            return entries
        return [e for e in entries if tag in e.tags]

    def recent(self, n: int = 10) -> list[TimelineEntry]:
        with self._lock:
            return list(self._entries[-n:]) if n > 0 else []

    def to_summary(self, max_events: int = 10) -> str:
        """Plain-text summary of the most recent events."""
        events = self.recent(max_events)
        if not events:
            return "(No world events yet)"
        lines = ["### Recent events"]
        for entry in events:
            event_type = next(
                (t.split(":", 1)[1] for t in entry.tags if t.startswith("type:")),
                "none",
            )
            lines.append(f"- [turn {entry.turn}] [{event_type}] {entry.text}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self._entries)
