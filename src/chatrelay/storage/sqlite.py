"""SQLite chat repository.

Provides persistent storage using a SQLite database file, one JSON document
per row. Uses aiosqlite for async access.
"""

import logging
from pathlib import Path

import aiosqlite
from pydantic import ValidationError

from ..errors import StorageError
from ..models import ChatModel, Conversation, Settings
from .base import ChatRepository

logger = logging.getLogger(__name__)


class SQLiteChatRepository(ChatRepository):
    """SQLite-backed chat repository.

    Fetched and inserted objects are held in an identity map; ``save()``
    writes every tracked object back and applies pending deletes in one
    transaction.
    """

    def __init__(self, path: str | Path = "./chatrelay.db"):
        self._db_path = Path(path)
        self._connection: aiosqlite.Connection | None = None
        self._threads: dict[str, Conversation] = {}
        self._models: dict[str, ChatModel] = {}
        self._settings: Settings | None = None
        self._deleted_threads: set[str] = set()

    async def connect(self) -> None:
        """Initialize database connection and schema."""
        try:
            if str(self._db_path) != ":memory:":
                self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(self._db_path)
            await self._create_schema()
        except (aiosqlite.Error, OSError) as e:
            raise StorageError(f"Cannot open database {self._db_path}: {e}") from e

    async def _create_schema(self) -> None:
        """Create database tables."""
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS threads (
                id TEXT PRIMARY KEY,
                updated_at TEXT NOT NULL,
                document TEXT NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_threads_updated_at
            ON threads(updated_at)
        """)

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS models (
                id TEXT PRIMARY KEY,
                document TEXT NOT NULL
            )
        """)

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                id TEXT PRIMARY KEY,
                document TEXT NOT NULL
            )
        """)

        await self._connection.commit()

    async def disconnect(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise StorageError("Repository is not connected")
        return self._connection

    async def _fetch_documents(self, query: str) -> list[str]:
        connection = self._require_connection()
        try:
            async with connection.execute(query) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(f"Query failed: {e}") from e
        return [row[0] for row in rows]

    async def fetch_threads(self) -> list[Conversation]:
        documents = await self._fetch_documents("SELECT document FROM threads")
        for document in documents:
            try:
                loaded = Conversation.model_validate_json(document)
            except ValidationError as e:
                raise StorageError(f"Corrupt conversation row: {e}") from e
            if loaded.id in self._deleted_threads:
                continue
            # Keep in-memory edits for objects already tracked
            self._threads.setdefault(loaded.id, loaded)
        return sorted(self._threads.values(), key=lambda t: t.updated_at, reverse=True)

    async def fetch_settings(self) -> Settings | None:
        if self._settings is not None:
            return self._settings
        documents = await self._fetch_documents("SELECT document FROM settings LIMIT 1")
        if not documents:
            return None
        try:
            self._settings = Settings.model_validate_json(documents[0])
        except ValidationError as e:
            raise StorageError(f"Corrupt settings row: {e}") from e
        return self._settings

    async def fetch_models(self) -> list[ChatModel]:
        documents = await self._fetch_documents("SELECT document FROM models")
        for document in documents:
            try:
                loaded = ChatModel.model_validate_json(document)
            except ValidationError as e:
                raise StorageError(f"Corrupt model row: {e}") from e
            self._models.setdefault(loaded.id, loaded)
        return list(self._models.values())

    async def insert_thread(self, thread: Conversation) -> None:
        self._deleted_threads.discard(thread.id)
        self._threads[thread.id] = thread

    async def insert_model(self, model: ChatModel) -> None:
        self._models[model.id] = model

    async def insert_settings(self, settings: Settings) -> None:
        self._settings = settings

    async def delete_thread(self, thread: Conversation) -> None:
        self._threads.pop(thread.id, None)
        self._deleted_threads.add(thread.id)

    async def save(self) -> None:
        """Write every tracked object and apply pending deletes."""
        connection = self._require_connection()
        try:
            for thread_id in self._deleted_threads:
                await connection.execute("DELETE FROM threads WHERE id = ?", (thread_id,))

            await connection.executemany(
                """
                INSERT INTO threads (id, updated_at, document) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    updated_at = excluded.updated_at,
                    document = excluded.document
                """,
                [
                    (t.id, t.updated_at.isoformat(), t.model_dump_json())
                    for t in self._threads.values()
                ],
            )

            await connection.executemany(
                """
                INSERT INTO models (id, document) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET document = excluded.document
                """,
                [(m.id, m.model_dump_json()) for m in self._models.values()],
            )

            if self._settings is not None:
                await connection.execute(
                    """
                    INSERT INTO settings (id, document) VALUES (?, ?)
                    ON CONFLICT(id) DO UPDATE SET document = excluded.document
                    """,
                    (self._settings.id, self._settings.model_dump_json()),
                )

            await connection.commit()
        except aiosqlite.Error as e:
            logger.error("Failed to save repository %s", self._db_path, exc_info=True)
            await connection.rollback()
            raise StorageError(f"Save failed: {e}") from e

        self._deleted_threads.clear()

    @property
    def backend_type(self) -> str:
        return "sqlite"

    @property
    def db_path(self) -> Path:
        return self._db_path
