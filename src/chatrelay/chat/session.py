"""Chat orchestrator.

A ChatSession owns the state one chat surface needs (threads, selection,
models, settings, the transient error banner) and drives a send from user
text to a persisted, titled assistant reply.

Hidden design decisions:
- Draft conversations are invisible to the repository until their first send
- Streamed fragments are coalesced before publishing, with a final flush on
  every exit path
- Repository and title failures are logged and recovered, never raised
"""

import asyncio
import logging
import time
from collections.abc import Callable

from ..capture import NullTextCapture, TextCapture, compose_message
from ..config import (
    ERROR_DISPLAY_SECONDS,
    PLACEHOLDER_TITLE,
    STREAM_BUFFER_THRESHOLD,
    STREAM_FLUSH_INTERVAL,
)
from ..errors import ChatRelayError, StorageError
from ..llm.manager import LLMManager
from ..llm.models import ChatMessage, GenerationOptions, StreamingResponse
from ..llm.titles import TitleGenerator
from ..models import ChatModel, Conversation, DraftApp, Message, Role, Settings, utc_now
from ..storage.base import ChatRepository

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Conversation | None], None]
ErrorCallback = Callable[[Exception], None]

EDITABLE_MODEL_FIELDS = frozenset(
    {"display_name", "enabled", "temperature", "top_p", "max_tokens", "system_prompt"}
)


def build_payload(thread: Conversation) -> list[ChatMessage]:
    """Chronological provider payload for every message in ``thread``."""
    return [
        ChatMessage(role=message.role.value, content=message.text)
        for message in thread.chronological_messages()
    ]


class _StreamBuffer:
    """Coalesces fragments, flushing on size or elapsed time."""

    def __init__(self, threshold: int, interval: float):
        self._threshold = threshold
        self._interval = interval
        self._pending: list[str] = []
        self._chars = 0
        self._last_flush = time.monotonic()

    def add(self, fragment: str) -> bool:
        """Buffer a fragment; True when the caller should flush."""
        self._pending.append(fragment)
        self._chars += len(fragment)
        return (
            self._chars >= self._threshold
            or time.monotonic() - self._last_flush >= self._interval
        )

    def drain(self) -> str:
        text = "".join(self._pending)
        self._pending = []
        self._chars = 0
        self._last_flush = time.monotonic()
        return text


class ChatSession:
    """Chat state and operations for one user-facing surface.

    Usage:
        session = ChatSession(repository, manager)
        await session.load_settings()
        await session.load_threads()
        await session.load_models()
        session.create_draft_thread()
        await session.send_message("Hello")
    """

    def __init__(
        self,
        repository: ChatRepository,
        manager: LLMManager,
        title_generator: TitleGenerator | None = None,
        text_capture: TextCapture | None = None,
        on_change: ChangeCallback | None = None,
        on_error: ErrorCallback | None = None,
        flush_threshold: int = STREAM_BUFFER_THRESHOLD,
        flush_interval: float = STREAM_FLUSH_INTERVAL,
        error_display_seconds: float = ERROR_DISPLAY_SECONDS,
        default_settings: Settings | None = None,
    ):
        self._repository = repository
        self._manager = manager
        self._title_generator = title_generator or TitleGenerator(manager)
        self._text_capture: TextCapture = text_capture or NullTextCapture()
        self.on_change = on_change
        self.on_error = on_error
        self._flush_threshold = flush_threshold
        self._flush_interval = flush_interval
        self._error_display_seconds = error_display_seconds

        self.threads: list[Conversation] = []
        self._selected_thread: Conversation | None = None
        self.draft_thread: Conversation | None = None
        self.models: list[ChatModel] = []
        self.available_models: list[ChatModel] = []
        self.selected_model: ChatModel | None = None
        self.settings: Settings = default_settings or Settings()
        self.thinking = False
        self.is_drafting_enabled = False
        self.selected_draft_app: DraftApp | None = None
        self.error_message: str | None = None
        self.last_error: Exception | None = None

        self._active_streams: dict[str, StreamingResponse] = {}
        # Threads with a send in flight, and those asked to stop before
        # their stream handle existed
        self._sending: set[str] = set()
        self._pending_cancels: set[str] = set()
        self._error_clear_handle: asyncio.TimerHandle | None = None

    @property
    def selected_thread(self) -> Conversation | None:
        return self._selected_thread

    @selected_thread.setter
    def selected_thread(self, thread: Conversation | None) -> None:
        self._selected_thread = thread
        if thread is not None:
            self.selected_model = self._tracked(thread.model)

    def select_thread(self, thread: Conversation | None) -> None:
        """Select a conversation; its model becomes the selected model."""
        self.selected_thread = thread
        self._publish(thread)

    def _tracked(self, model: ChatModel) -> ChatModel:
        """The stored instance of ``model``, so edits and stamps persist."""
        return next((m for m in self.models if m.same_model(model)), model)

    def _default_model(self) -> ChatModel | None:
        default = self.settings.default_model
        if default is not None:
            match = next((m for m in self.available_models if m.same_model(default)), None)
            if match is not None:
                return match
        return self.available_models[0] if self.available_models else None

    def select_default_model(self) -> ChatModel | None:
        """Select the configured default model, or the first available one."""
        self.selected_model = self._default_model()
        return self.selected_model

    def _resolve_model(self) -> ChatModel | None:
        if self.selected_model is not None:
            return self.selected_model
        return next((m for m in self.available_models if m.enabled), None)

    def _publish(self, thread: Conversation | None) -> None:
        if self.on_change is not None:
            self.on_change(thread)

    def _report_error(self, error: Exception) -> None:
        """Show a transient error banner that clears itself."""
        self.error_message = str(error)
        self.last_error = error
        if self.on_error is not None:
            self.on_error(error)

        if self._error_clear_handle is not None:
            self._error_clear_handle.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._error_clear_handle = loop.call_later(self._error_display_seconds, self.clear_error)

    def clear_error(self) -> None:
        self.error_message = None
        self._error_clear_handle = None
        self._publish(self.selected_thread)

    async def _save(self) -> bool:
        try:
            await self._repository.save()
        except StorageError:
            logger.error("Failed to save repository", exc_info=True)
            return False
        return True

    async def load_settings(self) -> Settings:
        """Load settings, creating and persisting defaults on first run."""
        try:
            settings = await self._repository.fetch_settings()
        except StorageError:
            logger.error("Failed to load settings", exc_info=True)
            return self.settings

        if settings is None:
            settings = self.settings
            try:
                await self._repository.insert_settings(settings)
            except StorageError:
                logger.error("Failed to insert default settings", exc_info=True)
            else:
                await self._save()
        self.settings = settings
        return settings

    async def load_threads(self) -> list[Conversation]:
        """Load conversations, most recent first, and select the first."""
        try:
            threads = await self._repository.fetch_threads()
        except StorageError:
            logger.error("Failed to load threads", exc_info=True)
            threads = []
        self.threads = sorted(threads, key=lambda t: t.updated_at, reverse=True)
        self.selected_thread = self.threads[0] if self.threads else None
        self._publish(self.selected_thread)
        return self.threads

    async def load_models(self) -> list[ChatModel]:
        """Discover models and persist any seen for the first time."""
        try:
            existing = await self._repository.fetch_models()
        except StorageError:
            logger.error("Failed to load stored models", exc_info=True)
            existing = []

        models = await self._manager.load_models(self.settings, existing)

        known = {model.key for model in existing}
        discovered = [model for model in models if model.key not in known]
        if discovered:
            try:
                for model in discovered:
                    await self._repository.insert_model(model)
            except StorageError:
                logger.error("Failed to insert discovered models", exc_info=True)
            else:
                await self._save()

        self.models = models
        self.available_models = [model for model in models if model.enabled]
        if self.selected_model is None:
            self.select_default_model()
        else:
            self.selected_model = self._tracked(self.selected_model)
        self._publish(self.selected_thread)
        return self.available_models

    async def update_model(self, model: ChatModel, **changes) -> ChatModel:
        """Edit a model's display name, availability or generation overrides.

        An empty ``display_name`` falls back to the model name. Disabling
        the selected model moves the selection to the default.

        Raises:
            ValueError: If a field is unknown or not editable
            pydantic.ValidationError: If a value has the wrong type
        """
        unknown = set(changes) - EDITABLE_MODEL_FIELDS
        if unknown:
            raise ValueError(f"Cannot edit model field(s): {', '.join(sorted(unknown))}")

        validated = ChatModel.model_validate({**model.model_dump(), **changes})
        for field in changes:
            setattr(model, field, getattr(validated, field))

        self.available_models = [m for m in self.models if m.enabled]
        if self.selected_model is not None and not self.selected_model.enabled:
            self.select_default_model()
        await self._save()
        self._publish(self.selected_thread)
        return model

    def create_draft_thread(self, title: str = PLACEHOLDER_TITLE) -> Conversation | None:
        """Create and select an in-memory conversation, not yet persisted.

        Returns:
            The draft, or None when no model is available
        """
        model = self._resolve_model()
        if model is None:
            logger.warning("Cannot create a conversation: no model available")
            return None
        thread = Conversation(title=title, model=model)
        self.draft_thread = thread
        self.selected_thread = thread
        self._publish(thread)
        return thread

    async def delete_thread(self, thread: Conversation) -> None:
        """Delete a conversation and move the selection to the first remaining one."""
        if thread is self.draft_thread:
            self.draft_thread = None
        else:
            try:
                await self._repository.delete_thread(thread)
            except StorageError:
                logger.error("Failed to delete thread %s", thread.id, exc_info=True)
                return
            if not await self._save():
                return

        self.threads = [t for t in self.threads if t.id != thread.id]
        if self.selected_thread is thread:
            self.selected_thread = self.threads[0] if self.threads else None
        self._publish(self.selected_thread)

    async def rename_thread(self, thread: Conversation, title: str) -> None:
        thread.title = title
        if thread is not self.draft_thread:
            await self._save()
        self._publish(thread)

    def toggle_drafting(self) -> None:
        self.is_drafting_enabled = not self.is_drafting_enabled
        if not self.is_drafting_enabled:
            self.selected_draft_app = None

    async def toggle_draft_with_last_app(self) -> None:
        """Turn drafting off, or back on with the app last drafted with."""
        if self.is_drafting_enabled:
            self.is_drafting_enabled = False
            self.selected_draft_app = None
            return
        last_app = self.settings.last_app_drafted_with
        if last_app is None:
            return
        await self.select_draft_app(last_app)

    async def select_draft_app(self, app: DraftApp | None) -> None:
        """Capture text from ``app`` on each send and remember the choice."""
        self.selected_draft_app = app
        self.is_drafting_enabled = app is not None
        if app is not None:
            self.settings.last_app_drafted_with = app
            await self._save()

    async def set_default_model(self, model: ChatModel | None) -> None:
        self.settings.default_model = model
        await self._save()

    def _captured_text(self) -> tuple[str, str | None]:
        if not self.is_drafting_enabled or self.selected_draft_app is None:
            return "", None
        app_id = self.selected_draft_app.app_id
        return (
            self._text_capture.get_selected_or_view_text(app_id),
            self._text_capture.get_current_file_extension(app_id),
        )

    async def _promote_draft(self, thread: Conversation) -> None:
        try:
            await self._repository.insert_thread(thread)
        except StorageError:
            logger.error("Failed to insert thread %s", thread.id, exc_info=True)
        else:
            await self._save()
        self.threads.insert(0, thread)
        self.draft_thread = None

    async def send_message(self, text: str | None = None) -> Message | None:
        """Send user text in the selected conversation and stream the reply.

        Starts a draft when nothing is selected. Text captured from the
        drafting app is attached as a fenced block.

        Returns:
            The assistant message, or None when nothing was sent
        """
        model = self._resolve_model()
        if model is None:
            logger.warning("Nothing sent: no model available")
            return None

        captured, extension = self._captured_text()
        message_text = compose_message(text, captured, extension)
        if message_text is None:
            return None

        thread = self.selected_thread
        if thread is None:
            thread = self.create_draft_thread()
            if thread is None:
                return None
        thread.model = model

        self.thinking = True
        self._sending.add(thread.id)
        assistant = Message(role=Role.ASSISTANT, text="", streaming=True)
        try:
            if thread is self.draft_thread:
                await self._promote_draft(thread)

            thread.append_message(Message(role=Role.USER, text=message_text))
            payload = build_payload(thread)

            client = self._manager.get_client(model.provider)
            options = GenerationOptions.for_model(model, self.settings.config_for(model.provider))
            model.last_used = utc_now()

            thread.append_message(assistant)
            await self._save()
            self._publish(thread)

            stream = await client.chat_completion_stream(payload, model.name, options)
            self._active_streams[thread.id] = stream
            if thread.id in self._pending_cancels:
                stream.cancel()
            if not await self._consume(thread, assistant, stream):
                logger.info("Reply in thread %s cancelled after %d characters", thread.id, len(assistant.text))

            assistant.streaming = False
            await self._save()
            self._publish(thread)

            if thread.needs_title:
                await self._generate_title(thread, message_text)
        except asyncio.CancelledError:
            logger.info("Send in thread %s interrupted", thread.id)
            assistant.streaming = False
            await self._save()
            self._publish(thread)
            raise
        except Exception as e:
            if isinstance(e, ChatRelayError):
                logger.error("Streaming failed: %s", e)
            else:
                logger.exception("Unexpected error while streaming")
            assistant.streaming = False
            await self._save()
            self._report_error(e)
            self._publish(thread)
        finally:
            self._active_streams.pop(thread.id, None)
            self._sending.discard(thread.id)
            self._pending_cancels.discard(thread.id)
            self.thinking = False
        return assistant

    async def _consume(self, thread: Conversation, assistant: Message, stream: StreamingResponse) -> bool:
        """Apply fragments in arrival order.

        Returns:
            False if the stream was cancelled
        """
        buffer = _StreamBuffer(self._flush_threshold, self._flush_interval)
        first = True

        def flush() -> None:
            assistant.text += buffer.drain()
            self._publish(thread)

        try:
            async for fragment in stream:
                if first:
                    first = False
                    thread.touch()
                if buffer.add(fragment):
                    flush()
        finally:
            flush()
        return not stream.cancelled

    async def _generate_title(self, thread: Conversation, text: str) -> None:
        try:
            title = await self._title_generator.generate_title(text, thread.model)
        except Exception:
            logger.warning("Failed to generate title for thread %s", thread.id, exc_info=True)
            return
        if not title:
            logger.warning("Title generator returned an empty title for thread %s", thread.id)
            return
        thread.title = title
        await self._save()
        self._publish(thread)

    def cancel_streaming_message(self, thread: Conversation | None = None) -> None:
        """Stop the reply streaming into ``thread`` (default: the selected one).

        The in-flight send finishes normally with the text received so far.
        A send that has not opened its stream yet stops as soon as it does.
        """
        target = thread or self.selected_thread
        stream = self._active_streams.get(target.id) if target is not None else None
        if stream is not None:
            stream.cancel()
            return
        if target is not None and target.id in self._sending:
            self._pending_cancels.add(target.id)
            return
        model = target.model if target is not None else self.selected_model
        if model is not None:
            self._manager.get_client(model.provider).cancel_stream_chat()

    @property
    def is_streaming(self) -> bool:
        return bool(self._active_streams)

