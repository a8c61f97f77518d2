from .anthropic import AnthropicProvider
from .gemini import GeminiProvider
from .ollama import OllamaProvider
from .openai import OpenAIProvider

__all__ = ["AnthropicProvider", "GeminiProvider", "OllamaProvider", "OpenAIProvider"]
