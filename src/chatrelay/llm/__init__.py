from .base import APIKeyProvider, LLMProvider
from .factory import create_llm_provider
from .manager import LLMManager
from .models import CancellationToken, ChatMessage, GenerationOptions, StreamingResponse, StreamState
from .naming import pretty_model_name
from .providers import AnthropicProvider, GeminiProvider, OllamaProvider, OpenAIProvider
from .registry import ProviderRegistry, create_provider_registry
from .titles import TitleGenerator, sanitize_title

__all__ = [
    "LLMProvider",
    "APIKeyProvider",
    "create_llm_provider",
    "LLMManager",
    "ProviderRegistry",
    "create_provider_registry",
    "TitleGenerator",
    "sanitize_title",
    "pretty_model_name",
    "CancellationToken",
    "ChatMessage",
    "GenerationOptions",
    "StreamingResponse",
    "StreamState",
    "AnthropicProvider",
    "GeminiProvider",
    "OllamaProvider",
    "OpenAIProvider",
]
