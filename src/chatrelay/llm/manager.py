"""Model discovery across providers."""

import asyncio
import logging

from ..config import MODEL_FETCH_TIMEOUT
from ..errors import ChatRelayError
from ..models import ChatModel, LLMProviderType, Settings
from .base import LLMProvider
from .naming import pretty_model_name
from .registry import ProviderRegistry

logger = logging.getLogger(__name__)


class LLMManager:
    """Fans model discovery out to every enabled provider.

    Hidden design decisions:
    - Concurrency: one fetch per provider, joined with ``asyncio.gather``
    - Each fetch is bounded by a timeout; a failing or slow provider
      contributes no models and never fails the whole load
    - Merge policy: known models keep their user-edited fields
    """

    def __init__(self, registry: ProviderRegistry, fetch_timeout: float = MODEL_FETCH_TIMEOUT):
        self._registry = registry
        self._fetch_timeout = fetch_timeout

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    def get_client(self, provider: LLMProviderType) -> LLMProvider:
        return self._registry.get_client(provider)

    async def _fetch(self, provider: LLMProviderType) -> list[str]:
        client = self._registry.get_client(provider)
        try:
            return await asyncio.wait_for(client.fetch_available_models(), timeout=self._fetch_timeout)
        except asyncio.TimeoutError:
            logger.warning("Timed out fetching %s models after %.1fs", provider.label, self._fetch_timeout)
        except ChatRelayError as e:
            logger.warning("Failed to fetch %s models: %s", provider.label, e)
        except Exception:
            logger.exception("Unexpected error fetching %s models", provider.label)
        return []

    async def load_models(self, settings: Settings, existing_models: list[ChatModel]) -> list[ChatModel]:
        """Discover models from every enabled provider.

        Args:
            settings: Decides which providers are queried
            existing_models: Previously known models; matches keep their
                display name, overrides, enabled flag and last-used stamp

        Returns:
            Deduplicated models in provider order, then listing order.
            Models no longer reported are dropped.
        """
        providers = settings.enabled_providers()
        results = await asyncio.gather(*(self._fetch(provider) for provider in providers))

        known = {model.key: model for model in existing_models}
        merged: list[ChatModel] = []
        seen: set[tuple[str, LLMProviderType]] = set()
        for provider, names in zip(providers, results):
            for name in names:
                key = (name, provider)
                if key in seen:
                    continue
                seen.add(key)
                model = known.get(key)
                if model is None:
                    model = ChatModel(name=name, provider=provider, display_name=pretty_model_name(name))
                merged.append(model)

        logger.debug("Loaded %d models from %d providers", len(merged), len(providers))
        return merged
