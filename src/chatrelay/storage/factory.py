"""Factory for creating chat repositories."""

from typing import Any

from .base import ChatRepository


def create_chat_repository(
    backend: str = "memory",
    **kwargs: Any
) -> ChatRepository:
    """Create a chat repository.

    Args:
        backend: Backend type ("memory" or "sqlite")
        **kwargs: Backend-specific configuration

    Returns:
        ChatRepository instance

    Raises:
        ValueError: If backend type is not supported
    """
    if backend == "memory":
        from .in_memory import InMemoryChatRepository
        return InMemoryChatRepository(**kwargs)

    elif backend == "sqlite":
        from .sqlite import SQLiteChatRepository
        return SQLiteChatRepository(**kwargs)

    raise ValueError(
        f"Unsupported storage backend: {backend}. "
        f"Supported backends: memory, sqlite"
    )
