"""Tests for the chat repositories."""
import aiosqlite
import pytest
import pytest_asyncio

from chatrelay.errors import StorageError
from chatrelay.models import ChatModel, Conversation, DraftApp, LLMProviderType, Message, Role, Settings
from chatrelay.storage import (
    InMemoryChatRepository,
    SQLiteChatRepository,
    create_chat_repository,
)


@pytest.fixture
def model():
    return ChatModel(name="gpt-4o", provider=LLMProviderType.OPENAI, display_name="GPT 4o")


@pytest_asyncio.fixture
async def sqlite_repo(tmp_path):
    """Connected SQLite repository in a temporary directory."""
    repository = SQLiteChatRepository(tmp_path / "chat.db")
    await repository.connect()
    yield repository
    await repository.disconnect()


async def _reopen(path) -> SQLiteChatRepository:
    repository = SQLiteChatRepository(path)
    await repository.connect()
    return repository


class TestFactory:
    """Tests for create_chat_repository."""

    def test_memory(self):
        """Test the in-memory backend."""
        assert create_chat_repository("memory").backend_type == "memory"

    def test_sqlite(self, tmp_path):
        """Test the SQLite backend with a path."""
        repository = create_chat_repository("sqlite", path=tmp_path / "x.db")
        assert isinstance(repository, SQLiteChatRepository)
        assert repository.backend_type == "sqlite"

    def test_unknown_backend(self):
        """Test that an unknown backend raises ValueError."""
        with pytest.raises(ValueError, match="Unsupported storage backend"):
            create_chat_repository("postgres")


class TestInMemoryRepository:
    """Tests for the in-memory repository."""

    @pytest.mark.asyncio
    async def test_threads_most_recent_first(self, model):
        """Test that threads are returned by updated_at, newest first."""
        repository = InMemoryChatRepository()
        first = Conversation(title="First", model=model)
        second = Conversation(title="Second", model=model)
        second.updated_at = first.updated_at.replace(year=first.updated_at.year + 1)
        await repository.insert_thread(first)
        await repository.insert_thread(second)

        assert [t.title for t in await repository.fetch_threads()] == ["Second", "First"]

    @pytest.mark.asyncio
    async def test_delete(self, model):
        """Test that deleted threads are no longer returned."""
        repository = InMemoryChatRepository()
        thread = Conversation(model=model)
        await repository.insert_thread(thread)
        await repository.delete_thread(thread)
        assert await repository.fetch_threads() == []

    @pytest.mark.asyncio
    async def test_context_manager(self):
        """Test the async context manager protocol."""
        async with InMemoryChatRepository() as repository:
            assert await repository.fetch_settings() is None


class TestSQLiteRepository:
    """Tests for the SQLite repository."""

    @pytest.mark.asyncio
    async def test_thread_persists_across_connections(self, tmp_path, model):
        """Test that a saved conversation is read back intact."""
        path = tmp_path / "chat.db"
        repository = await _reopen(path)
        thread = Conversation(title="Weather", model=model)
        thread.append_message(Message(role=Role.USER, text="Will it rain?"))
        await repository.insert_thread(thread)
        await repository.save()
        await repository.disconnect()

        reopened = await _reopen(path)
        try:
            (loaded,) = await reopened.fetch_threads()
        finally:
            await reopened.disconnect()
        assert loaded == thread

    @pytest.mark.asyncio
    async def test_tracked_edits_saved(self, tmp_path, model):
        """Test that mutating a fetched object and saving persists the change."""
        path = tmp_path / "chat.db"
        repository = await _reopen(path)
        await repository.insert_thread(Conversation(title="Old", model=model))
        await repository.save()
        await repository.disconnect()

        repository = await _reopen(path)
        (thread,) = await repository.fetch_threads()
        thread.title = "New"
        thread.append_message(Message(role=Role.ASSISTANT, text="Sunny"))
        await repository.save()
        await repository.disconnect()

        repository = await _reopen(path)
        try:
            (thread,) = await repository.fetch_threads()
        finally:
            await repository.disconnect()
        assert thread.title == "New"
        assert [m.text for m in thread.messages] == ["Sunny"]

    @pytest.mark.asyncio
    async def test_fetch_returns_tracked_instances(self, sqlite_repo, model):
        """Test that repeated fetches return the same objects."""
        thread = Conversation(model=model)
        await sqlite_repo.insert_thread(thread)
        await sqlite_repo.save()

        first = await sqlite_repo.fetch_threads()
        second = await sqlite_repo.fetch_threads()
        assert first[0] is second[0] is thread

    @pytest.mark.asyncio
    async def test_delete_applied_on_save(self, tmp_path, model):
        """Test that a delete only becomes durable on save."""
        path = tmp_path / "chat.db"
        repository = await _reopen(path)
        keep = Conversation(title="Keep", model=model)
        drop = Conversation(title="Drop", model=model)
        await repository.insert_thread(keep)
        await repository.insert_thread(drop)
        await repository.save()

        await repository.delete_thread(drop)
        assert [t.title for t in await repository.fetch_threads()] == ["Keep"]
        await repository.save()
        await repository.disconnect()

        repository = await _reopen(path)
        try:
            assert [t.title for t in await repository.fetch_threads()] == ["Keep"]
        finally:
            await repository.disconnect()

    @pytest.mark.asyncio
    async def test_models_and_settings(self, tmp_path, model):
        """Test that models and settings round-trip through the database."""
        path = tmp_path / "chat.db"
        repository = await _reopen(path)
        assert await repository.fetch_settings() is None

        settings = Settings(default_model=model, last_app_drafted_with=DraftApp.EMACS)
        settings.openai.enabled = True
        await repository.insert_settings(settings)
        await repository.insert_model(model)
        await repository.save()
        await repository.disconnect()

        repository = await _reopen(path)
        try:
            loaded_settings = await repository.fetch_settings()
            loaded_models = await repository.fetch_models()
        finally:
            await repository.disconnect()
        assert loaded_settings == settings
        assert loaded_models == [model]

    @pytest.mark.asyncio
    async def test_model_identity_includes_provider(self, sqlite_repo):
        """Test that same-named models from two providers are stored separately."""
        await sqlite_repo.insert_model(ChatModel(name="gemma", provider=LLMProviderType.OLLAMA))
        await sqlite_repo.insert_model(ChatModel(name="gemma", provider=LLMProviderType.GEMINI))
        await sqlite_repo.save()
        assert len(await sqlite_repo.fetch_models()) == 2

    @pytest.mark.asyncio
    async def test_corrupt_row(self, tmp_path):
        """Test that an undecodable row raises StorageError."""
        path = tmp_path / "chat.db"
        repository = await _reopen(path)
        await repository.disconnect()
        async with aiosqlite.connect(path) as db:
            await db.execute(
                "INSERT INTO threads (id, updated_at, document) VALUES (?, ?, ?)",
                ("bad", "2025-01-01", "{not json"),
            )
            await db.commit()

        repository = await _reopen(path)
        try:
            with pytest.raises(StorageError, match="Corrupt conversation row"):
                await repository.fetch_threads()
        finally:
            await repository.disconnect()

    @pytest.mark.asyncio
    async def test_not_connected(self):
        """Test that using an unconnected repository raises StorageError."""
        repository = SQLiteChatRepository(":memory:")
        with pytest.raises(StorageError, match="not connected"):
            await repository.save()

    @pytest.mark.asyncio
    async def test_in_memory_database(self, model):
        """Test that ":memory:" works for throwaway databases."""
        async with SQLiteChatRepository(":memory:") as repository:
            await repository.insert_thread(Conversation(model=model))
            await repository.save()
            assert len(await repository.fetch_threads()) == 1
