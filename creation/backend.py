"""GenerationBackend: the only place that talks to the generative services.

Text, JSON and schema-constrained generation go through the Anthropic API;
schema-constrained output is a forced tool call whose input schema is the
requested schema. Images are rendered through the Google GenAI API.

Every failure is raised as a ``GenerationError`` subclass. Whether a failure
aborts or degrades a synthesis is decided by the caller, never here.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any

import anthropic
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from pydantic import BaseModel, ConfigDict

from config.settings import Settings
from core.errors import GenerationError, ImageGenerationError, SafetyBlockedError
from core.token_tracker import TokenTracker

logger = logging.getLogger(__name__)

# Exponential backoff config
MAX_RETRIES = 3
BASE_DELAY = 1.0  # seconds

# Finish reasons that mean the image was withheld for content safety
SAFETY_FINISH_REASONS = frozenset({
    "SAFETY", "IMAGE_SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII",
})


class GeneratedImage(BaseModel):
    """Raw image payload returned by the image model."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str = "image/png"

    @property
    def data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


def parse_json_object(raw_text: str) -> dict[str, Any] | None:
    """Parse a JSON object out of model output.

    Tolerates markdown code fences and prose around the object.
    """
    text = raw_text.strip()

    # Strip markdown code fences
    if text.startswith("```"):
        lines = text.split("\n")
        lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines).strip()

    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    # Try to find JSON object
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            parsed = json.loads(text[start:end + 1])
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass

    return None


class GenerationBackend:
    """Async client for text, structured and image generation."""

    def __init__(
        self,
        settings: Settings | None = None,
        tracker: TokenTracker | None = None,
        text_client: anthropic.AsyncAnthropic | None = None,
        image_client: genai.Client | None = None,
    ):
        self.settings = settings or Settings()
        self.tracker = tracker or TokenTracker()
        self._text_client = text_client
        self._image_client = image_client

    @property
    def text_client(self) -> anthropic.AsyncAnthropic:
        if self._text_client is None:
            self._text_client = anthropic.AsyncAnthropic(
                api_key=self.settings.ANTHROPIC_API_KEY,
            )
        return self._text_client

    @property
    def image_client(self) -> genai.Client:
        if self._image_client is None:
            self._image_client = genai.Client(api_key=self.settings.GEMINI_API_KEY)
        return self._image_client

    async def generate_text(
        self,
        prompt: str,
        *,
        model: str | None = None,
        max_tokens: int = 1024,
        system: str | None = None,
    ) -> str:
        """Free-text completion."""
        response = await self._call_claude(
            model=model or self.settings.MODEL_NAME,
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
        parts = [block.text for block in response.content if block.type == "text"]
        return "".join(parts).strip()

    async def generate_json(
        self,
        prompt: str,
        *,
        model: str | None = None,
        max_tokens: int = 2048,
    ) -> dict[str, Any]:
        """Completion whose text must contain a single JSON object."""
        raw = await self.generate_text(prompt, model=model, max_tokens=max_tokens)
        parsed = parse_json_object(raw)
        if parsed is None:
            raise GenerationError(f"Response is not a JSON object: {raw[:200]!r}")
        return parsed

    async def generate_structured(
        self,
        prompt: str,
        schema: dict[str, Any],
        *,
        name: str,
        description: str = "Record the generated content.",
        model: str | None = None,
        max_tokens: int = 2048,
    ) -> dict[str, Any]:
        """Schema-constrained generation via a forced tool call."""
        response = await self._call_claude(
            model=model or self.settings.MODEL_NAME,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
            tools=[{
                "name": name,
                "description": description,
                "input_schema": schema,
            }],
            tool_choice={"type": "tool", "name": name},
        )
        for block in response.content:
            if block.type == "tool_use" and block.name == name:
                if not isinstance(block.input, dict):
                    raise GenerationError(f"Tool {name} returned non-object input")
                return dict(block.input)
        raise GenerationError(f"Model did not call tool {name}")

    async def generate_image(self, prompt: str) -> GeneratedImage:
        """Render an image. Raises SafetyBlockedError when the model refuses."""
        self.tracker.record_image()
        try:
            response = await asyncio.wait_for(
                self.image_client.aio.models.generate_content(
                    model=self.settings.MODEL_IMAGE,
                    contents=prompt,
                    config=types.GenerateContentConfig(
                        response_modalities=["TEXT", "IMAGE"],
                    ),
                ),
                timeout=self.settings.REQUEST_TIMEOUT,
            )
        except asyncio.TimeoutError as e:
            raise ImageGenerationError("Image request timed out") from e
        except genai_errors.APIError as e:
            raise ImageGenerationError(f"Image API error: {e}") from e

        feedback = getattr(response, "prompt_feedback", None)
        block_reason = getattr(feedback, "block_reason", None) if feedback else None
        if block_reason:
            raise SafetyBlockedError(
                f"Image prompt blocked: {_reason_name(block_reason)}",
                reason=_reason_name(block_reason),
            )

        if not response.candidates:
            raise ImageGenerationError("No candidates in image response")

        candidate = response.candidates[0]
        parts = candidate.content.parts if candidate.content and candidate.content.parts else []
        for part in parts:
            if part.inline_data is not None and part.inline_data.data:
                return GeneratedImage(
                    data=part.inline_data.data,
                    mime_type=part.inline_data.mime_type or "image/png",
                )

        reason = _reason_name(candidate.finish_reason)
        if reason in SAFETY_FINISH_REASONS:
            logger.warning("Image generation blocked by safety filters (%s)", reason)
            raise SafetyBlockedError(
                f"Image generation blocked by safety filters: {reason}",
                reason=reason,
            )
        raise ImageGenerationError(f"No image data in response (finish reason: {reason})")

    async def _call_claude(self, **kwargs):
        """Call the Messages API with rate-limit retries and a per-call timeout."""
        if kwargs.get("system") is None:
            kwargs.pop("system", None)

        last_error: Exception | None = None
        for attempt in range(MAX_RETRIES):
            try:
                response = await asyncio.wait_for(
                    self.text_client.messages.create(**kwargs),
                    timeout=self.settings.REQUEST_TIMEOUT,
                )
                self.tracker.record(getattr(response, "usage", None), kwargs.get("model", ""))
                return response
            except anthropic.RateLimitError as e:
                last_error = e
                delay = BASE_DELAY * (2 ** attempt)
                logger.warning("Rate limited, retrying in %.1fs", delay)
                await asyncio.sleep(delay)
            except asyncio.TimeoutError as e:
                raise GenerationError("Text request timed out") from e
            except (anthropic.APITimeoutError, anthropic.APIError) as e:
                raise GenerationError(f"Text API error: {e}") from e
        raise GenerationError(f"Rate limited after {MAX_RETRIES} attempts") from last_error


def _reason_name(reason: Any) -> str:
    if reason is None:
        return "UNKNOWN"
    return getattr(reason, "name", None) or str(reason)
