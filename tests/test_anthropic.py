"""Tests for the Anthropic provider against a mocked HTTP transport."""
import json

import httpx
import pytest

from conftest import collect, mock_client, sse_body
from chatrelay.config import (
    ANTHROPIC_API_VERSION,
    ANTHROPIC_STREAM_MAX_TOKENS,
    ANTHROPIC_THINKING_BUDGET,
    ANTHROPIC_TITLE_MAX_TOKENS,
)
from chatrelay.errors import AuthError, ParseError, ProviderError
from chatrelay.llm import AnthropicProvider
from chatrelay.llm.models import ChatMessage, GenerationOptions

HELLO = [ChatMessage(role="user", content="Hello")]


def _provider(handler) -> AnthropicProvider:
    return AnthropicProvider(api_key="sk-ant-test", http_client=mock_client(handler), max_retries=0)


def _delta(text: str) -> dict:
    return {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}}


def _stream_response(*events: dict) -> httpx.Response:
    names = [event["type"] for event in events]
    return httpx.Response(
        200,
        text=sse_body(*events, event_names=names),
        headers={"content-type": "text/event-stream"},
    )


def _message(*blocks: dict) -> dict:
    return {
        "id": "msg_1",
        "type": "message",
        "role": "assistant",
        "model": "claude-3-5-haiku-latest",
        "content": list(blocks),
        "stop_reason": "end_turn",
        "stop_sequence": None,
        "usage": {"input_tokens": 1, "output_tokens": 1},
    }


class TestModelListing:
    """Tests for listing models."""

    @pytest.mark.asyncio
    async def test_legacy_models_excluded(self):
        """Test that legacy models are dropped and order is kept."""
        ids = ["claude-3-7-sonnet-latest", "claude-2.1", "claude-3-5-haiku-latest", "claude-3-sonnet-20240229"]

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/models"
            assert request.headers["x-api-key"] == "sk-ant-test"
            assert request.headers["anthropic-version"] == ANTHROPIC_API_VERSION
            return httpx.Response(200, json={
                "data": [
                    {"id": i, "type": "model", "display_name": i, "created_at": "2025-01-01T00:00:00Z"}
                    for i in ids
                ],
                "has_more": False,
                "first_id": ids[0],
                "last_id": ids[-1],
            })

        async with _provider(handler) as provider:
            assert await provider.fetch_available_models() == [
                "claude-3-7-sonnet-latest",
                "claude-3-5-haiku-latest",
            ]

    @pytest.mark.asyncio
    async def test_rejected_key(self):
        """Test that a 401 becomes AuthError."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={
                "type": "error", "error": {"type": "authentication_error", "message": "invalid x-api-key"},
            })

        async with _provider(handler) as provider:
            with pytest.raises(AuthError):
                await provider.fetch_available_models()

    @pytest.mark.asyncio
    async def test_api_version_can_be_overridden(self):
        """Test that caller headers win over the pinned API version."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["anthropic-version"])
            return httpx.Response(200, json={"data": [], "has_more": False, "first_id": None, "last_id": None})

        provider = AnthropicProvider(
            api_key="sk-ant-test",
            http_client=mock_client(handler),
            max_retries=0,
            default_headers={"anthropic-version": "2099-01-01"},
        )
        async with provider:
            assert await provider.fetch_available_models() == []

        assert seen == ["2099-01-01"]


class TestStreaming:
    """Tests for SSE event decoding."""

    @pytest.mark.asyncio
    async def test_text_deltas_until_message_stop(self):
        """Test that only text deltas are yielded and message_stop ends the stream."""
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/messages"
            return _stream_response(
                {"type": "message_start", "message": {"id": "msg_1"}},
                {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
                {"type": "ping"},
                _delta("Hi "),
                {"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", "partial_json": "{"}},
                _delta("there!"),
                {"type": "content_block_stop", "index": 0},
                {"type": "message_delta", "delta": {"stop_reason": "end_turn"}},
                {"type": "message_stop"},
                _delta("ignored"),
            )

        async with _provider(handler) as provider:
            assert await collect(await provider.chat_completion_stream(HELLO, "claude-3-5-haiku-latest")) == [
                "Hi ",
                "there!",
            ]

    @pytest.mark.asyncio
    async def test_error_event(self):
        """Test that an in-band error event raises ProviderError."""
        async with _provider(lambda request: _stream_response(
            _delta("par"),
            {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}},
        )) as provider:
            with pytest.raises(ProviderError) as exc_info:
                await collect(await provider.chat_completion_stream(HELLO, "claude-3-5-haiku-latest"))
        assert exc_info.value.code == "overloaded_error"

    @pytest.mark.asyncio
    async def test_overloaded_status(self):
        """Test that a non-2xx envelope becomes ProviderError."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(529, json={
                "type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"},
            })

        async with _provider(handler) as provider:
            with pytest.raises(ProviderError) as exc_info:
                await collect(await provider.chat_completion_stream(HELLO, "claude-3-5-haiku-latest"))
        assert exc_info.value.status_code == 529


class TestRequestBuilding:
    """Tests for message conversion and generation parameters."""

    def test_system_messages_lifted(self):
        """Test that system content moves to the system field and empty messages are dropped."""
        provider = AnthropicProvider(api_key="sk-ant-test")
        messages = [
            ChatMessage(role="system", content="Be terse"),
            ChatMessage(role="user", content="Hello"),
            ChatMessage(role="assistant", content=""),
            ChatMessage(role="user", content="Again"),
        ]
        request = provider._build_request(
            messages, "claude-3-5-haiku-latest", GenerationOptions(system_prompt="You are helpful"), 4096
        )

        assert request["system"] == "You are helpful\n\nBe terse"
        assert request["messages"] == [
            {"role": "user", "content": "Hello"},
            {"role": "user", "content": "Again"},
        ]
        assert request["max_tokens"] == 4096

    def test_sampling_parameters(self):
        """Test that temperature and top_p are sent for ordinary models."""
        provider = AnthropicProvider(api_key="sk-ant-test")
        request = provider._build_request(
            HELLO, "claude-3-5-haiku-latest", GenerationOptions(temperature=0.4, top_p=0.9, max_tokens=500), 4096
        )
        assert request["temperature"] == 0.4
        assert request["top_p"] == 0.9
        assert request["max_tokens"] == 500
        assert "thinking" not in request

    @pytest.mark.asyncio
    async def test_thinking_enabled_for_supporting_models(self):
        """Test that thinking models get a budget and no sampling parameters."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(json.loads(request.content))
            return _stream_response({"type": "message_stop"})

        async with _provider(handler) as provider:
            await collect(await provider.chat_completion_stream(
                HELLO, "claude-3-7-sonnet-latest", GenerationOptions(temperature=0.4)
            ))

        assert seen["thinking"] == {"type": "enabled", "budget_tokens": ANTHROPIC_THINKING_BUDGET}
        assert seen["max_tokens"] == ANTHROPIC_STREAM_MAX_TOKENS
        assert "temperature" not in seen
        assert seen["stream"] is True


class TestSingleCompletion:
    """Tests for non-streaming completions and titles."""

    @pytest.mark.asyncio
    async def test_joins_text_blocks(self):
        """Test that thinking blocks are skipped and text blocks are joined."""
        async with _provider(lambda request: httpx.Response(200, json=_message(
            {"type": "thinking", "thinking": "Hmm", "signature": "sig"},
            {"type": "text", "text": " Weather "},
            {"type": "text", "text": "Forecast "},
        ))) as provider:
            assert await provider.single_chat_completion("Weather?", "claude-3-7-sonnet-latest") == "Weather Forecast"

    @pytest.mark.asyncio
    async def test_no_text(self):
        """Test that a reply without text blocks becomes ParseError."""
        async with _provider(lambda request: httpx.Response(200, json=_message())) as provider:
            with pytest.raises(ParseError):
                await provider.single_chat_completion("Weather?", "claude-3-5-haiku-latest")

    @pytest.mark.asyncio
    async def test_title_uses_small_allowance(self):
        """Test that title generation caps max_tokens and sanitizes the result."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(json.loads(request.content))
            return httpx.Response(200, json=_message({"type": "text", "text": "\"Weather Forecast.\""}))

        async with _provider(handler) as provider:
            title = await provider.generate_title("Will it rain?", "claude-3-5-haiku-latest")

        assert title == "Weather Forecast"
        assert seen["max_tokens"] == ANTHROPIC_TITLE_MAX_TOKENS
        assert "Will it rain?" in seen["messages"][0]["content"]
