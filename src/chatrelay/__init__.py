"""
chatrelay: one streaming chat interface over local and cloud LLM providers.

This package follows Parnas's information hiding principles,
where each module hides a specific design decision.
"""

__version__ = "0.1.0"

from .chat import ChatSession
from .errors import AuthError, ChatRelayError, NetworkError, ParseError, ProviderError, StorageError
from .llm import LLMManager, create_llm_provider, create_provider_registry
from .models import ChatModel, Conversation, LLMProviderType, Message, Role, Settings
from .storage import create_chat_repository

__all__ = [
    "ChatSession",
    "ChatRelayError",
    "AuthError",
    "NetworkError",
    "ParseError",
    "ProviderError",
    "StorageError",
    "LLMManager",
    "create_llm_provider",
    "create_provider_registry",
    "ChatModel",
    "Conversation",
    "LLMProviderType",
    "Message",
    "Role",
    "Settings",
    "create_chat_repository",
]
