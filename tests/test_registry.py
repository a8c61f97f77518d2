"""Tests for provider construction and the provider registry."""
import pytest

from conftest import FakeProvider
from chatrelay.credentials import InMemoryCredentialStore
from chatrelay.llm import (
    AnthropicProvider,
    GeminiProvider,
    OllamaProvider,
    OpenAIProvider,
    ProviderRegistry,
    create_llm_provider,
    create_provider_registry,
)
from chatrelay.models import LLMProviderType, Settings


class TestCreateLLMProvider:
    """Tests for the provider factory."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name,cls", [
        ("ollama", OllamaProvider),
        ("local", OllamaProvider),
        ("openai", OpenAIProvider),
        ("anthropic", AnthropicProvider),
        ("Claude", AnthropicProvider),
        ("gemini", GeminiProvider),
    ])
    async def test_known_providers(self, name, cls):
        """Test that each provider name builds the matching client."""
        config = {} if cls is OllamaProvider else {"api_key": "k"}
        async with create_llm_provider(name, **config) as provider:
            assert isinstance(provider, cls)

    @pytest.mark.asyncio
    async def test_enum_accepted(self):
        """Test that an LLMProviderType can be passed directly."""
        async with create_llm_provider(LLMProviderType.OLLAMA, base_url="http://gpu-box:11434/") as provider:
            assert provider.base_url == "http://gpu-box:11434"

    @pytest.mark.parametrize("name", ["openai", "anthropic", "gemini"])
    def test_cloud_provider_needs_key_source(self, name):
        """Test that cloud providers require a key or a credential store."""
        with pytest.raises(TypeError, match="requires 'api_key' or 'credentials'"):
            create_llm_provider(name)

    def test_unknown_provider(self):
        """Test that an unknown provider raises ValueError."""
        with pytest.raises(ValueError, match="Unsupported provider"):
            create_llm_provider("mistral")


class TestProviderRegistry:
    """Tests for ProviderRegistry."""

    def test_must_cover_every_provider(self):
        """Test that a registry missing a provider is rejected."""
        with pytest.raises(ValueError, match="openai"):
            ProviderRegistry({
                LLMProviderType.OLLAMA: FakeProvider(LLMProviderType.OLLAMA),
                LLMProviderType.GEMINI: FakeProvider(LLMProviderType.GEMINI),
                LLMProviderType.ANTHROPIC: FakeProvider(LLMProviderType.ANTHROPIC),
            })

    def test_lookup_returns_same_instance(self):
        """Test that lookups are stable."""
        clients = {p: FakeProvider(p) for p in LLMProviderType}
        registry = ProviderRegistry(clients)
        for provider in LLMProviderType:
            assert registry.get_client(provider) is clients[provider]
            assert registry.get_client(provider) is registry.get_client(provider)

    @pytest.mark.asyncio
    async def test_close_continues_after_failure(self, caplog):
        """Test that one failing close does not stop the others."""
        class BrokenClose(FakeProvider):
            async def close(self) -> None:
                raise RuntimeError("close failed")

        clients = {p: FakeProvider(p) for p in LLMProviderType}
        clients[LLMProviderType.OLLAMA] = BrokenClose(LLMProviderType.OLLAMA)

        async with ProviderRegistry(clients):
            pass

        assert all(c.closed for p, c in clients.items() if p is not LLMProviderType.OLLAMA)
        assert "Failed to close Ollama client" in caplog.text


class TestCreateProviderRegistry:
    """Tests for building a registry from settings."""

    @pytest.mark.asyncio
    async def test_builds_every_provider(self):
        """Test that settings and credentials reach the clients."""
        settings = Settings()
        settings.ollama.endpoint_url = "http://gpu-box:11434"
        settings.openai.api_key_name = "work_openai_key"
        credentials = InMemoryCredentialStore({"work_openai_key": "sk-work"})

        async with create_provider_registry(settings, credentials) as registry:
            local = registry.get_client(LLMProviderType.OLLAMA)
            openai_client = registry.get_client(LLMProviderType.OPENAI)

            assert isinstance(local, OllamaProvider)
            assert local.base_url == "http://gpu-box:11434"
            assert isinstance(openai_client, OpenAIProvider)
            assert openai_client.key_name == "work_openai_key"
            assert openai_client._require_api_key() == "sk-work"
            assert isinstance(registry.get_client(LLMProviderType.GEMINI), GeminiProvider)
            assert isinstance(registry.get_client(LLMProviderType.ANTHROPIC), AnthropicProvider)
