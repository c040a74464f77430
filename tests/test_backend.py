"""Tests for GenerationBackend with mocked Anthropic and GenAI clients."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from core.errors import GenerationError, ImageGenerationError, SafetyBlockedError
from creation import backend as backend_module
from creation.backend import GeneratedImage, GenerationBackend, parse_json_object
from tests.conftest import make_settings


def claude_response(*blocks, input_tokens=10, output_tokens=5):
    return SimpleNamespace(
        content=list(blocks),
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def text_block(text):
    return SimpleNamespace(type="text", text=text)


def image_response(parts=(), finish_reason=None, block_reason=None):
    feedback = SimpleNamespace(block_reason=block_reason) if block_reason else None
    return SimpleNamespace(
        prompt_feedback=feedback,
        candidates=[SimpleNamespace(
            content=SimpleNamespace(parts=list(parts)),
            finish_reason=finish_reason,
        )],
    )


@pytest.fixture
def text_client():
    client = MagicMock()
    client.messages.create = AsyncMock()
    return client


@pytest.fixture
def image_client():
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock()
    return client


@pytest.fixture
def live_backend(text_client, image_client):
    return GenerationBackend(
        settings=make_settings(),
        text_client=text_client,
        image_client=image_client,
    )


@pytest.mark.parametrize("raw", [
    '{"a": 1}',
    '```json\n{"a": 1}\n```',
    'Here you go:\n{"a": 1}\nEnjoy!',
])
def test_parse_json_object(raw):
    assert parse_json_object(raw) == {"a": 1}


@pytest.mark.parametrize("raw", ["", "not json", "[1, 2]", "{broken"])
def test_parse_json_object_rejects(raw):
    assert parse_json_object(raw) is None


def test_generated_image_data_url():
    assert GeneratedImage(data=b"abc", mime_type="image/jpeg").data_url == "data:image/jpeg;base64,YWJj"


async def test_generate_structured_forces_tool_call(live_backend, text_client):
    text_client.messages.create.return_value = claude_response(
        SimpleNamespace(type="tool_use", name="record_item_metadata", input={"name": "Sword"}),
    )
    schema = {"type": "object", "properties": {"name": {"type": "string"}}}

    result = await live_backend.generate_structured("make a sword", schema, name="record_item_metadata")

    assert result == {"name": "Sword"}
    kwargs = text_client.messages.create.call_args.kwargs
    assert kwargs["tool_choice"] == {"type": "tool", "name": "record_item_metadata"}
    assert kwargs["tools"][0]["input_schema"] == schema
    assert "system" not in kwargs
    assert live_backend.tracker.api_calls == 1
    assert live_backend.tracker.total_tokens == 15
    assert sum(live_backend.tracker.tokens_by_model.values()) == 15


async def test_generate_structured_without_tool_call_fails(live_backend, text_client):
    text_client.messages.create.return_value = claude_response(text_block("I refuse"))
    with pytest.raises(GenerationError):
        await live_backend.generate_structured("x", {"type": "object"}, name="record_x")


async def test_generate_json(live_backend, text_client):
    text_client.messages.create.return_value = claude_response(
        text_block('```json\n{"attributes": {}}\n```'),
    )
    assert await live_backend.generate_json("x") == {"attributes": {}}

    text_client.messages.create.return_value = claude_response(text_block("no json here"))
    with pytest.raises(GenerationError):
        await live_backend.generate_json("x")


async def test_rate_limit_is_retried(live_backend, text_client, monkeypatch):
    monkeypatch.setattr(backend_module, "BASE_DELAY", 0.0)
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    rate_limited = anthropic.RateLimitError(
        "rate limited", response=httpx.Response(429, request=request), body=None,
    )
    text_client.messages.create.side_effect = [rate_limited, claude_response(text_block("ok"))]

    assert await live_backend.generate_text("hi") == "ok"
    assert text_client.messages.create.await_count == 2


async def test_persistent_rate_limit_raises(live_backend, text_client, monkeypatch):
    monkeypatch.setattr(backend_module, "BASE_DELAY", 0.0)
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    text_client.messages.create.side_effect = anthropic.RateLimitError(
        "rate limited", response=httpx.Response(429, request=request), body=None,
    )
    with pytest.raises(GenerationError):
        await live_backend.generate_text("hi")
    assert text_client.messages.create.await_count == backend_module.MAX_RETRIES


async def test_generate_image_returns_inline_data(live_backend, image_client):
    image_client.aio.models.generate_content.return_value = image_response(parts=[
        SimpleNamespace(inline_data=None, text="here is your image"),
        SimpleNamespace(inline_data=SimpleNamespace(data=b"\x89PNG", mime_type="image/png")),
    ])
    image = await live_backend.generate_image("a sword")

    assert image.data == b"\x89PNG"
    assert live_backend.tracker.image_calls == 1


async def test_safety_finish_reason_raises_safety_blocked(live_backend, image_client):
    image_client.aio.models.generate_content.return_value = image_response(
        finish_reason=SimpleNamespace(name="IMAGE_SAFETY"),
    )
    with pytest.raises(SafetyBlockedError) as excinfo:
        await live_backend.generate_image("a battlefield")
    assert excinfo.value.reason == "IMAGE_SAFETY"


async def test_blocked_prompt_raises_safety_blocked(live_backend, image_client):
    image_client.aio.models.generate_content.return_value = image_response(
        block_reason=SimpleNamespace(name="PROHIBITED_CONTENT"),
    )
    with pytest.raises(SafetyBlockedError):
        await live_backend.generate_image("x")


async def test_missing_image_is_a_plain_image_error(live_backend, image_client):
    image_client.aio.models.generate_content.return_value = image_response(
        finish_reason=SimpleNamespace(name="STOP"),
    )
    with pytest.raises(ImageGenerationError) as excinfo:
        await live_backend.generate_image("x")
    assert not isinstance(excinfo.value, SafetyBlockedError)
