import weakref
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

from ..errors import AuthError
from ..models import LLMProviderType
from .models import ChatMessage, GenerationOptions, StreamingResponse
from .titles import generate_title

if TYPE_CHECKING:
    from ..credentials import CredentialStore


class LLMProvider(ABC):
    """Abstract base class for LLM providers.

    This module hides the design decision of which LLM provider to use.
    Implementations must handle provider-specific details like:
    - API client setup and authentication
    - Request/response format conversion (role mapping included)
    - Stream framing (NDJSON or SSE) and end-of-stream detection
    - Translation of vendor errors into chatrelay errors

    One instance serves every conversation that uses the provider. Each
    stream is cancelled through its own StreamingResponse handle;
    cancel_stream_chat() cancels every stream the instance has open.

    Supports async context manager protocol for proper resource cleanup:
        async with provider:
            stream = await provider.chat_completion_stream(messages, "llama3.2")
        # Automatically cleaned up
    """

    provider_type: ClassVar[LLMProviderType]

    def __init__(self) -> None:
        self._active_streams: weakref.WeakSet[StreamingResponse] = weakref.WeakSet()

    @property
    def label(self) -> str:
        return self.provider_type.label

    @abstractmethod
    async def fetch_available_models(self) -> list[str]:
        """List the model names this provider offers.

        Returns:
            Provider-native model identifiers, after any allow/exclude list

        Raises:
            AuthError: Credential missing or rejected
            NetworkError: Transport failure or undecodable error response
        """

    @abstractmethod
    async def chat_completion_stream(
        self,
        messages: list[ChatMessage],
        model: str,
        options: GenerationOptions | None = None,
    ) -> StreamingResponse:
        """Start a streaming chat completion.

        No I/O happens until the returned handle is iterated.

        Args:
            messages: Conversation history in chronological order
            model: Provider-native model name
            options: Generation parameters (None uses vendor defaults)

        Returns:
            StreamingResponse yielding text fragments in wire order.
            Iteration raises AuthError, ProviderError or NetworkError on
            failure and ends quietly when cancelled.
        """

    @abstractmethod
    async def single_chat_completion(
        self,
        message: str,
        model: str,
        options: GenerationOptions | None = None,
    ) -> str:
        """Generate a non-streaming completion for a single user message.

        Raises:
            AuthError, ProviderError, NetworkError: As for streaming
            ParseError: Response body could not be decoded
        """

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections or resources."""

    def cancel_stream_chat(self) -> None:
        """Cancel every stream this provider currently has open.

        Idempotent; safe to call when no stream is active.
        """
        for stream in list(self._active_streams):
            stream.cancel()

    @property
    def has_active_stream(self) -> bool:
        return any(not stream.done for stream in list(self._active_streams))

    async def generate_title(
        self,
        text: str,
        model: str,
        options: GenerationOptions | None = None,
    ) -> str:
        """Turn a user's first message into a short conversation title."""
        return await generate_title(self, text, model, options)

    def _register_stream(self, stream: StreamingResponse) -> StreamingResponse:
        self._active_streams.add(stream)
        return stream

    async def __aenter__(self) -> "LLMProvider":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit with automatic cleanup.

        Note: Suppresses "Event loop is closed" errors during cleanup.
        This is a known harmless race condition in httpx/anyio cleanup:
        https://github.com/encode/httpx/issues/914
        """
        try:
            await self.close()
        except RuntimeError as e:
            # Suppress harmless cleanup errors from httpx/anyio
            if "Event loop is closed" not in str(e):
                raise


class APIKeyProvider(LLMProvider):
    """Base for cloud providers authenticated with an API key.

    Hidden design decisions:
    - Key resolution: an explicit key wins, otherwise the key is loaded from
      the credential store on every call, so a missing key surfaces as
      AuthError on first use rather than at construction
    - SDK client lifetime: rebuilt whenever the resolved key changes
    """

    default_key_name: ClassVar[str]

    def __init__(
        self,
        api_key: str | None = None,
        credentials: "CredentialStore | None" = None,
        key_name: str | None = None,
    ):
        super().__init__()
        self._api_key = api_key
        self._credentials = credentials
        self._key_name = key_name or self.default_key_name
        self._client: Any = None
        self._client_key: str | None = None

    @property
    def key_name(self) -> str:
        return self._key_name

    def _require_api_key(self) -> str:
        key = self._api_key
        if not key and self._credentials is not None:
            key = self._credentials.load(self._key_name)
        if not key:
            raise AuthError(self.label)
        return key

    @abstractmethod
    def _build_client(self, api_key: str) -> Any:
        """Create the vendor SDK client for ``api_key``."""

    async def _close_client(self, client: Any) -> None:
        await client.close()

    async def _get_client(self) -> Any:
        key = self._require_api_key()
        if self._client is None or key != self._client_key:
            if self._client is not None:
                await self._close_client(self._client)
            self._client = self._build_client(key)
            self._client_key = key
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._close_client(self._client)
            self._client = None
            self._client_key = None
