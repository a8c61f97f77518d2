import asyncio
from collections.abc import AsyncIterator
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..models import ChatModel, ProviderConfig


class StreamState(str, Enum):
    """Lifecycle of a single streaming response."""

    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CancellationToken:
    """Per-call cancellation flag polled by provider stream generators."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class StreamingResponse:
    """Handle for one streaming chat completion.

    Acts as an async iterator of text fragments. Each call to
    ``chat_completion_stream`` returns its own handle, so cancelling one
    stream never affects another stream on the same provider.

    Usage:
        stream = await provider.chat_completion_stream(messages, "gpt-4o")
        async for fragment in stream:
            print(fragment, end="")

        # From elsewhere, e.g. a "stop" button:
        stream.cancel()

    Cancelling sets the token the provider polls at every line boundary
    and interrupts a pending read, so the underlying HTTP response is
    closed even when the server has gone quiet. A cancelled stream ends
    normally (``StopAsyncIteration``), never with an exception.
    """

    def __init__(self, async_iter: AsyncIterator[str], token: CancellationToken | None = None):
        """Initialize with an async iterator of text fragments.

        Args:
            async_iter: Async iterator (usually an async generator) yielding fragments
            token: Cancellation token shared with the generator
        """
        self._iter = async_iter
        self._token = token or CancellationToken()
        self._pending: asyncio.Future[str] | None = None
        self._state = StreamState.IDLE

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def done(self) -> bool:
        return self._state in (StreamState.COMPLETED, StreamState.FAILED, StreamState.CANCELLED)

    def cancel(self) -> None:
        """Cancel the stream. Idempotent and safe after completion."""
        if self.done:
            return
        self._token.cancel()
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()

    async def aclose(self) -> None:
        """Close the underlying generator and its HTTP response."""
        aclose = getattr(self._iter, "aclose", None)
        if aclose is not None:
            await aclose()

    def __aiter__(self) -> "StreamingResponse":
        return self

    async def __anext__(self) -> str:
        if self.done:
            raise StopAsyncIteration
        if self._token.cancelled:
            await self._finish_cancelled()

        self._state = StreamState.STREAMING
        self._pending = asyncio.ensure_future(self._iter.__anext__())
        try:
            fragment = await self._pending
        except StopAsyncIteration:
            self._state = StreamState.CANCELLED if self._token.cancelled else StreamState.COMPLETED
            raise
        except asyncio.CancelledError:
            if not self._token.cancelled:
                # The consuming task itself was cancelled
                self._state = StreamState.FAILED
                raise
            await self._finish_cancelled()
        except Exception:
            self._state = StreamState.FAILED
            raise
        finally:
            self._pending = None

        if self._token.cancelled:
            # Cancelled while the fragment was in flight; drop it
            await self._finish_cancelled()
        return fragment

    async def _finish_cancelled(self) -> None:
        self._state = StreamState.CANCELLED
        await self.aclose()
        raise StopAsyncIteration


class ChatMessage(BaseModel):
    """Provider-agnostic message passed into a provider client."""

    model_config = ConfigDict(frozen=True)

    role: str = Field(description="Role of the message sender: 'user', 'assistant', or 'system'")
    content: str = Field(description="Content of the message")


class GenerationOptions(BaseModel):
    """Generation parameters for one request.

    ``None`` means "use the vendor default".
    """

    model_config = ConfigDict(frozen=True)

    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    system_prompt: str | None = None

    @classmethod
    def for_model(cls, model: ChatModel, config: ProviderConfig | None = None) -> "GenerationOptions":
        """Resolve options from per-model overrides, then provider defaults."""
        temperature = model.temperature
        max_tokens = model.max_tokens
        if config is not None:
            if temperature is None:
                temperature = config.temperature
            if max_tokens is None:
                max_tokens = config.max_tokens
        return cls(
            temperature=temperature,
            top_p=model.top_p,
            max_tokens=max_tokens,
            system_prompt=model.system_prompt or None,
        )
