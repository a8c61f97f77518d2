"""In-memory chat repository.

Dict-based storage for session-only use and tests. Data is lost when the
application exits.
"""

from ..models import ChatModel, Conversation, Settings
from .base import ChatRepository


class InMemoryChatRepository(ChatRepository):
    """In-memory chat repository (session-only).

    ``save()`` only counts calls, since tracked objects are the stored
    objects.
    """

    def __init__(self) -> None:
        self._threads: dict[str, Conversation] = {}
        self._models: dict[str, ChatModel] = {}
        self._settings: Settings | None = None
        self.save_count = 0

    async def connect(self) -> None:
        """Initialize storage (no-op for in-memory)."""
        pass

    async def disconnect(self) -> None:
        """Close storage (no-op for in-memory)."""
        pass

    async def fetch_threads(self) -> list[Conversation]:
        return sorted(self._threads.values(), key=lambda t: t.updated_at, reverse=True)

    async def fetch_settings(self) -> Settings | None:
        return self._settings

    async def fetch_models(self) -> list[ChatModel]:
        return list(self._models.values())

    async def insert_thread(self, thread: Conversation) -> None:
        self._threads[thread.id] = thread

    async def insert_model(self, model: ChatModel) -> None:
        self._models[model.id] = model

    async def insert_settings(self, settings: Settings) -> None:
        self._settings = settings

    async def delete_thread(self, thread: Conversation) -> None:
        self._threads.pop(thread.id, None)

    async def save(self) -> None:
        self.save_count += 1

    @property
    def backend_type(self) -> str:
        return "memory"
