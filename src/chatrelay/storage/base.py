"""Abstract base class for chat repositories.

The abstraction hides:
- Storage format (in-process objects, JSON documents in SQLite)
- Persistence mechanism and connection management
- Unit of work: inserts, deletes and in-place edits become durable on ``save()``
"""

from abc import ABC, abstractmethod

from ..models import ChatModel, Conversation, Settings


class ChatRepository(ABC):
    """Abstract chat repository.

    Objects returned by the fetch methods are tracked: mutating them and
    calling ``save()`` persists the mutation. Every method raises
    StorageError on failure.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Initialize the repository backend."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the repository backend gracefully."""

    @abstractmethod
    async def fetch_threads(self) -> list[Conversation]:
        """All conversations, most recently updated first."""

    @abstractmethod
    async def fetch_settings(self) -> Settings | None:
        """The installation settings, or None on first run."""

    @abstractmethod
    async def fetch_models(self) -> list[ChatModel]:
        """All known models."""

    @abstractmethod
    async def insert_thread(self, thread: Conversation) -> None:
        """Start tracking a new conversation."""

    @abstractmethod
    async def insert_model(self, model: ChatModel) -> None:
        """Start tracking a newly discovered model."""

    @abstractmethod
    async def insert_settings(self, settings: Settings) -> None:
        """Start tracking the settings aggregate."""

    @abstractmethod
    async def delete_thread(self, thread: Conversation) -> None:
        """Stop tracking a conversation; removed on the next save."""

    @abstractmethod
    async def save(self) -> None:
        """Persist every tracked change."""

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Get the backend type identifier."""

    async def __aenter__(self) -> "ChatRepository":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()
