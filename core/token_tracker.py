"""Usage tracker for generation backend calls."""

from __future__ import annotations

import threading
from collections import Counter


class TokenTracker:
    """Thread-safe usage counters, overall and per model."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.input_tokens: int = 0
        self.output_tokens: int = 0
        self.api_calls: int = 0
        self.image_calls: int = 0
        self.tokens_by_model: Counter[str] = Counter()

    def record(self, usage, model: str = "") -> None:
        """Record token usage from an Anthropic ``response.usage`` object."""
        if usage is None:
            return
        spent_in = getattr(usage, "input_tokens", 0) or 0
        spent_out = getattr(usage, "output_tokens", 0) or 0
        with self._lock:
            self.input_tokens += spent_in
            self.output_tokens += spent_out
            self.api_calls += 1
            if model:
                self.tokens_by_model[model] += spent_in + spent_out

    def record_image(self) -> None:
        with self._lock:
            self.image_calls += 1

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def summary(self) -> str:
        line = (
            f"API: {self.api_calls} | Images: {self.image_calls} | "
            f"In: {_fmt(self.input_tokens)} | Out: {_fmt(self.output_tokens)} | "
            f"Total: {_fmt(self.total_tokens)}"
        )
        models = [(m, n) for m, n in self.tokens_by_model.most_common() if n]
        if models:
            line += " | " + ", ".join(f"{m}: {_fmt(n)}" for m, n in models)
        return line


def _fmt(n: int) -> str:
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 1_000:
        return f"{n / 1_000:.1f}K"
    return str(n)
