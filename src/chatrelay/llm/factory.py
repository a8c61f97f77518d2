from typing import Any

from ..models import LLMProviderType
from .base import LLMProvider
from .providers import AnthropicProvider, GeminiProvider, OllamaProvider, OpenAIProvider


def _require_key_source(label: str, config: dict[str, Any]) -> None:
    if "api_key" not in config and "credentials" not in config:
        raise TypeError(f"{label} provider requires 'api_key' or 'credentials' in config")


def create_llm_provider(provider: str | LLMProviderType, **config: Any) -> LLMProvider:
    """Create an LLM provider instance.

    This factory function hides the instantiation logic for different providers.

    Args:
        provider: Provider type ('ollama', 'openai', 'anthropic', 'gemini')
        **config: Provider-specific configuration
            For Ollama:
                - base_url: str (default: 'http://localhost:11434')
                - timeout: float
            For OpenAI:
                - api_key: str, or credentials: CredentialStore (one required)
                - key_name: str (default: 'openai_api_key')
                - base_url: str (default: 'https://api.openai.com/v1')
            For Anthropic (Claude):
                - api_key: str, or credentials: CredentialStore (one required)
                - key_name: str (default: 'anthropic_api_key')
                - base_url: str (default: 'https://api.anthropic.com')
            For Gemini:
                - api_key: str, or credentials: CredentialStore (one required)
                - key_name: str (default: 'gemini_api_key')
                - http_client: httpx.AsyncClient for the raw stream

    Returns:
        Initialized LLM provider instance

    Raises:
        ValueError: If provider type is not supported
        TypeError: If required configuration is missing

    Examples:
        >>> provider = create_llm_provider("ollama", base_url="http://localhost:11434")

        >>> provider = create_llm_provider(
        ...     "anthropic",
        ...     credentials=FileCredentialStore("~/.config/chatrelay/credentials.json"),
        ... )
    """
    provider_lower = provider.value if isinstance(provider, LLMProviderType) else provider.lower()

    if provider_lower in ("ollama", "local"):
        return OllamaProvider(**config)

    if provider_lower == "openai":
        _require_key_source("OpenAI", config)
        return OpenAIProvider(**config)

    if provider_lower in ("anthropic", "claude"):
        _require_key_source("Anthropic", config)
        return AnthropicProvider(**config)

    if provider_lower == "gemini":
        _require_key_source("Gemini", config)
        return GeminiProvider(**config)

    raise ValueError(
        f"Unsupported provider: {provider}. "
        f"Supported providers: 'ollama', 'openai', 'anthropic', 'gemini'"
    )
