"""Pytest configuration and shared fixtures."""
import asyncio
import json
from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from chatrelay.llm.base import LLMProvider
from chatrelay.llm.manager import LLMManager
from chatrelay.llm.models import CancellationToken, ChatMessage, GenerationOptions, StreamingResponse
from chatrelay.llm.registry import ProviderRegistry
from chatrelay.models import ChatModel, LLMProviderType, Settings


class FakeProvider(LLMProvider):
    """Scriptable provider used in place of a real backend."""

    provider_type = LLMProviderType.OLLAMA

    def __init__(
        self,
        provider_type: LLMProviderType = LLMProviderType.OLLAMA,
        models: list[str] | None = None,
        fragments: list[str] | None = None,
        stream_error: Exception | None = None,
        fetch_error: Exception | None = None,
        fetch_delay: float = 0.0,
        title: str = "Weather Forecast",
        title_error: Exception | None = None,
        hang_after_fragments: bool = False,
    ):
        super().__init__()
        self.provider_type = provider_type
        self.models = models or []
        self.fragments = fragments if fragments is not None else ["Hi ", "there!"]
        self.stream_error = stream_error
        self.fetch_error = fetch_error
        self.fetch_delay = fetch_delay
        self.title = title
        self.title_error = title_error
        self.hang_after_fragments = hang_after_fragments

        self.stream_calls: list[tuple[list[ChatMessage], str, GenerationOptions | None]] = []
        self.completion_calls: list[tuple[str, str]] = []
        self.fragments_sent = asyncio.Event()
        self.closed = False

    async def fetch_available_models(self) -> list[str]:
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        if self.fetch_error is not None:
            raise self.fetch_error
        return list(self.models)

    async def chat_completion_stream(
        self,
        messages: list[ChatMessage],
        model: str,
        options: GenerationOptions | None = None,
    ) -> StreamingResponse:
        self.stream_calls.append((list(messages), model, options))
        token = CancellationToken()
        return self._register_stream(StreamingResponse(self._generate(token), token))

    async def _generate(self, token: CancellationToken) -> AsyncIterator[str]:
        for fragment in self.fragments:
            if token.cancelled:
                return
            yield fragment
        self.fragments_sent.set()
        if self.stream_error is not None:
            raise self.stream_error
        if self.hang_after_fragments:
            # A server that stops sending without closing the connection
            await asyncio.Event().wait()

    async def single_chat_completion(
        self,
        message: str,
        model: str,
        options: GenerationOptions | None = None,
    ) -> str:
        self.completion_calls.append((message, model))
        if self.title_error is not None:
            raise self.title_error
        return self.title

    async def close(self) -> None:
        self.closed = True


def make_registry(**providers: FakeProvider) -> ProviderRegistry:
    """Registry of fake providers; unspecified types get an empty fake."""
    clients = {}
    for provider_type in LLMProviderType:
        clients[provider_type] = providers.get(provider_type.value) or FakeProvider(provider_type)
    return ProviderRegistry(clients)


def sse_body(*events: dict | str, event_names: list[str | None] | None = None) -> str:
    """Encode events as an SSE body; strings are sent verbatim as data."""
    lines = []
    for index, event in enumerate(events):
        name = event_names[index] if event_names else None
        if name:
            lines.append(f"event: {name}")
        data = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {data}")
        lines.append("")
    return "\n".join(lines) + "\n"


def ndjson_body(*objects: dict | str) -> str:
    return "\n".join(o if isinstance(o, str) else json.dumps(o) for o in objects) + "\n"


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def collect(stream: StreamingResponse) -> list[str]:
    return [fragment async for fragment in stream]


@pytest.fixture
def local_model():
    """A local model as discovered from the server."""
    return ChatModel(name="llama3.2:latest", provider=LLMProviderType.OLLAMA)


@pytest.fixture
def local_settings():
    """Settings with only the local provider enabled."""
    settings = Settings()
    settings.ollama.enabled = True
    return settings


@pytest.fixture
def fake_local():
    """Fake local provider streaming "Hi " + "there!"."""
    return FakeProvider(LLMProviderType.OLLAMA, models=["llama3.2:latest"])


@pytest.fixture
def manager(fake_local):
    """Manager whose local client is the fake local provider."""
    return LLMManager(make_registry(ollama=fake_local), fetch_timeout=1.0)
