"""Chat storage module for chatrelay.

Persists conversations, discovered models and settings.
"""

from .base import ChatRepository
from .factory import create_chat_repository
from .in_memory import InMemoryChatRepository
from .sqlite import SQLiteChatRepository

__all__ = [
    "ChatRepository",
    "InMemoryChatRepository",
    "SQLiteChatRepository",
    "create_chat_repository",
]
