"""Provider registry: total lookup from provider type to client."""

import logging
from collections.abc import Mapping
from typing import Any

from ..credentials import CredentialStore
from ..models import LLMProviderType, Settings
from .base import LLMProvider
from .factory import create_llm_provider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Maps every LLMProviderType to exactly one client instance.

    Lookup is pure: no I/O, no construction.
    """

    def __init__(self, clients: Mapping[LLMProviderType, LLMProvider]):
        missing = [p.value for p in LLMProviderType if p not in clients]
        if missing:
            raise ValueError(f"Registry is missing clients for: {', '.join(missing)}")
        self._clients = dict(clients)

    def get_client(self, provider: LLMProviderType) -> LLMProvider:
        return self._clients[provider]

    def clients(self) -> list[LLMProvider]:
        return list(self._clients.values())

    async def close(self) -> None:
        """Close every client, logging failures so the rest still close."""
        for provider, client in self._clients.items():
            try:
                await client.close()
            except Exception:
                logger.exception("Failed to close %s client", provider.label)

    async def __aenter__(self) -> "ProviderRegistry":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


def create_provider_registry(
    settings: Settings,
    credentials: CredentialStore,
    provider_kwargs: Mapping[LLMProviderType, dict[str, Any]] | None = None,
) -> ProviderRegistry:
    """Build one client per provider from settings.

    Args:
        settings: Supplies the local endpoint and credential names
        credentials: Store the cloud clients load their keys from
        provider_kwargs: Extra constructor kwargs per provider

    Returns:
        ProviderRegistry covering every provider type
    """
    extra = provider_kwargs or {}

    def cloud(provider: LLMProviderType) -> dict[str, Any]:
        config = {"credentials": credentials, **extra.get(provider, {})}
        key_name = settings.config_for(provider).api_key_name
        if key_name:
            config["key_name"] = key_name
        return config

    local_config: dict[str, Any] = dict(extra.get(LLMProviderType.OLLAMA, {}))
    if settings.ollama.endpoint_url:
        local_config.setdefault("base_url", settings.ollama.endpoint_url)

    return ProviderRegistry({
        LLMProviderType.OLLAMA: create_llm_provider(LLMProviderType.OLLAMA, **local_config),
        LLMProviderType.OPENAI: create_llm_provider(LLMProviderType.OPENAI, **cloud(LLMProviderType.OPENAI)),
        LLMProviderType.GEMINI: create_llm_provider(LLMProviderType.GEMINI, **cloud(LLMProviderType.GEMINI)),
        LLMProviderType.ANTHROPIC: create_llm_provider(
            LLMProviderType.ANTHROPIC, **cloud(LLMProviderType.ANTHROPIC)
        ),
    })
