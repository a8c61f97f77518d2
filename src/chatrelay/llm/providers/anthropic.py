"""Anthropic Claude LLM provider implementation.

Uses the official Anthropic Python SDK for authentication, model listing and
single-shot completions. Streaming reads the raw SSE body through
``with_streaming_response`` so events are decoded line by line here.
Reference: https://github.com/anthropics/anthropic-sdk-python
"""

import logging
from collections.abc import AsyncIterator
from typing import Any, ClassVar

import anthropic
import httpx
from anthropic import AsyncAnthropic

from ...config import (
    ANTHROPIC_API_VERSION,
    ANTHROPIC_BASE_URL,
    ANTHROPIC_KEY_NAME,
    ANTHROPIC_STREAM_MAX_TOKENS,
    ANTHROPIC_THINKING_BUDGET,
    ANTHROPIC_TITLE_MAX_TOKENS,
    REQUEST_TIMEOUT,
)
from ...errors import NetworkError, ParseError
from ...models import LLMProviderType
from ..base import APIKeyProvider
from ..models import CancellationToken, ChatMessage, GenerationOptions, StreamingResponse
from ..titles import build_title_prompt, sanitize_title
from ..wire import (
    decode_error_envelope,
    iter_sse_events,
    parse_json_line,
    raise_for_stream_error,
    status_error_body,
)

logger = logging.getLogger(__name__)


class AnthropicProvider(APIKeyProvider):
    """Anthropic Claude LLM provider implementation.

    Hidden design decisions:
    - Anthropic API client initialization (``x-api-key``, ``anthropic-version``)
    - Message format conversion (system messages lifted into ``system``)
    - Mandatory ``max_tokens`` and extended thinking for models that support it
    - SSE decoding (``content_block_delta`` text, ``message_stop``, ``error``)
    """

    provider_type = LLMProviderType.ANTHROPIC
    default_key_name = ANTHROPIC_KEY_NAME

    # Marked as legacy by Anthropic
    excluded_models: ClassVar[frozenset[str]] = frozenset(
        {"claude-2.0", "claude-2.1", "claude-3-sonnet-20240229"}
    )
    # Model name fragments that get extended thinking enabled
    thinking_model_markers: ClassVar[tuple[str, ...]] = ("claude-3-7",)

    def __init__(
        self,
        api_key: str | None = None,
        credentials: Any = None,
        key_name: str | None = None,
        base_url: str = ANTHROPIC_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
        **client_kwargs: Any
    ):
        """Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key (takes precedence over the credential store)
            credentials: CredentialStore the key is loaded from on each call
            key_name: Credential name (default: "anthropic_api_key")
            base_url: API base URL
            timeout: Request timeout in seconds
            **client_kwargs: Additional kwargs for AsyncAnthropic client
        """
        super().__init__(api_key=api_key, credentials=credentials, key_name=key_name)
        self._base_url = base_url
        self._timeout = timeout
        self._client_kwargs = client_kwargs

    def _build_client(self, api_key: str) -> AsyncAnthropic:
        client_kwargs = dict(self._client_kwargs)
        headers = {"anthropic-version": ANTHROPIC_API_VERSION, **client_kwargs.pop("default_headers", {})}
        return AsyncAnthropic(
            api_key=api_key,
            base_url=self._base_url,
            timeout=self._timeout,
            default_headers=headers,
            **client_kwargs
        )

    def supports_thinking(self, model: str) -> bool:
        return any(marker in model for marker in self.thinking_model_markers)

    def _translate(self, exc: Exception) -> Exception:
        if isinstance(exc, anthropic.APIStatusError):
            logger.error("%s request failed. Status: %s", self.label, exc.status_code)
            return decode_error_envelope(exc.status_code, status_error_body(exc), self.label)
        return NetworkError(f"{self.label} request failed: {exc}")

    def _build_request(
        self,
        messages: list[ChatMessage],
        model: str,
        options: GenerationOptions | None,
        default_max_tokens: int,
    ) -> dict[str, Any]:
        system_parts: list[str] = []
        if options is not None and options.system_prompt:
            system_parts.append(options.system_prompt)

        anthropic_messages = []
        for msg in messages:
            if msg.role == "system":
                if msg.content:
                    system_parts.append(msg.content)
            elif msg.content:
                # Empty content blocks are rejected by the API
                anthropic_messages.append({"role": msg.role, "content": msg.content})

        max_tokens = default_max_tokens
        if options is not None and options.max_tokens is not None:
            max_tokens = options.max_tokens

        request: dict[str, Any] = {
            "model": model,
            "messages": anthropic_messages,
            "max_tokens": max_tokens,
        }
        if system_parts:
            request["system"] = "\n\n".join(system_parts)

        if self.supports_thinking(model) and max_tokens > ANTHROPIC_THINKING_BUDGET:
            # Sampling parameters are fixed while thinking is enabled
            request["thinking"] = {"type": "enabled", "budget_tokens": ANTHROPIC_THINKING_BUDGET}
        elif options is not None:
            if options.temperature is not None:
                request["temperature"] = options.temperature
            if options.top_p is not None:
                request["top_p"] = options.top_p
        return request

    async def fetch_available_models(self) -> list[str]:
        """List models, minus the legacy ones."""
        client = await self._get_client()
        try:
            models = [model.id async for model in client.models.list()]
        except (anthropic.APIStatusError, anthropic.APIConnectionError) as e:
            raise self._translate(e) from e
        return [model_id for model_id in models if model_id not in self.excluded_models]

    async def chat_completion_stream(
        self,
        messages: list[ChatMessage],
        model: str,
        options: GenerationOptions | None = None,
    ) -> StreamingResponse:
        """Stream a chat completion.

        Args:
            messages: Conversation history
            model: Model id (e.g. "claude-3-5-haiku-latest")
            options: Generation parameters; max_tokens defaults to 4096

        Returns:
            StreamingResponse yielding the text of each ``content_block_delta``
        """
        request = self._build_request(messages, model, options, ANTHROPIC_STREAM_MAX_TOKENS)
        token = CancellationToken()
        return self._register_stream(StreamingResponse(self._stream_generator(request, token), token))

    async def _stream_generator(
        self,
        request: dict[str, Any],
        token: CancellationToken,
    ) -> AsyncIterator[str]:
        """Internal generator decoding ``event:``/``data:`` pairs."""
        client = await self._get_client()
        try:
            async with client.messages.with_streaming_response.create(
                stream=True, **request
            ) as response:
                async for event in iter_sse_events(response.iter_lines()):
                    if token.cancelled:
                        return
                    if event.event == "message_stop":
                        return
                    if not event.data.strip():
                        continue

                    chunk = parse_json_line(event.data, self.label)
                    if chunk is None:
                        continue
                    raise_for_stream_error(chunk, self.label)

                    event_type = chunk.get("type")
                    if event_type == "message_stop":
                        return
                    if event_type != "content_block_delta":
                        continue
                    delta = chunk.get("delta")
                    if isinstance(delta, dict):
                        text = delta.get("text")
                        if isinstance(text, str) and text:
                            yield text
        except (anthropic.APIStatusError, anthropic.APIConnectionError, httpx.HTTPError) as e:
            raise self._translate(e) from e

    async def single_chat_completion(
        self,
        message: str,
        model: str,
        options: GenerationOptions | None = None,
    ) -> str:
        """Generate a non-streaming completion for one user message."""
        client = await self._get_client()
        request = self._build_request(
            [ChatMessage(role="user", content=message)], model, options, ANTHROPIC_STREAM_MAX_TOKENS
        )
        try:
            response = await client.messages.create(**request)
        except (anthropic.APIStatusError, anthropic.APIConnectionError) as e:
            raise self._translate(e) from e

        # Thinking blocks carry no ``text``; only text blocks form the answer
        texts = [block.text for block in response.content if getattr(block, "type", None) == "text"]
        if not texts:
            raise ParseError(f"{self.label} returned no text content")
        return "".join(texts).strip()

    async def generate_title(
        self,
        text: str,
        model: str,
        options: GenerationOptions | None = None,
    ) -> str:
        """Generate a title with a small token allowance."""
        title_options = (options or GenerationOptions()).model_copy(
            update={"max_tokens": ANTHROPIC_TITLE_MAX_TOKENS}
        )
        raw_title = await self.single_chat_completion(build_title_prompt(text), model, title_options)
        return sanitize_title(raw_title)
