"""OpenAI LLM provider implementation.

Uses the official OpenAI Python SDK for authentication, model listing and
single-shot completions. Streaming reads the raw SSE body through
``with_streaming_response`` so every line is decoded here.
Reference: https://github.com/openai/openai-python
"""

import logging
from collections.abc import AsyncIterator
from typing import Any, ClassVar

import httpx
import openai
from openai import AsyncOpenAI

from ...config import OPENAI_BASE_URL, OPENAI_KEY_NAME, REQUEST_TIMEOUT
from ...errors import NetworkError, ParseError
from ...models import LLMProviderType
from ..base import APIKeyProvider
from ..models import CancellationToken, ChatMessage, GenerationOptions, StreamingResponse
from ..wire import (
    DONE_SENTINEL,
    decode_error_envelope,
    iter_sse_events,
    parse_json_line,
    raise_for_stream_error,
    status_error_body,
)

logger = logging.getLogger(__name__)


class OpenAIProvider(APIKeyProvider):
    """OpenAI LLM provider implementation.

    Hidden design decisions:
    - OpenAI API client initialization and bearer authentication
    - Which listed models count as chat models
    - SSE decoding (``[DONE]`` sentinel, ``finish_reason == "stop"``)
    - Translation of SDK exceptions into chatrelay errors
    """

    provider_type = LLMProviderType.OPENAI
    default_key_name = OPENAI_KEY_NAME

    # Listed model ids must start with one of these to be offered for chat
    chat_model_prefixes: ClassVar[tuple[str, ...]] = ("gpt-", "o1", "o3", "o4", "chatgpt-")
    # ...and must not contain any of these
    excluded_model_markers: ClassVar[tuple[str, ...]] = (
        "instruct",
        "audio",
        "realtime",
        "transcribe",
        "tts",
        "search",
        "image",
    )

    def __init__(
        self,
        api_key: str | None = None,
        credentials: Any = None,
        key_name: str | None = None,
        base_url: str = OPENAI_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
        **client_kwargs: Any
    ):
        """Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key (takes precedence over the credential store)
            credentials: CredentialStore the key is loaded from on each call
            key_name: Credential name (default: "openai_api_key")
            base_url: API base URL
            timeout: Request timeout in seconds
            **client_kwargs: Additional kwargs for AsyncOpenAI client
        """
        super().__init__(api_key=api_key, credentials=credentials, key_name=key_name)
        self._base_url = base_url
        self._timeout = timeout
        self._client_kwargs = client_kwargs

    def _build_client(self, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=api_key,
            base_url=self._base_url,
            timeout=self._timeout,
            **self._client_kwargs
        )

    def is_chat_model(self, model_id: str) -> bool:
        lowered = model_id.lower()
        if not lowered.startswith(self.chat_model_prefixes):
            return False
        return not any(marker in lowered for marker in self.excluded_model_markers)

    def _translate(self, exc: Exception) -> Exception:
        if isinstance(exc, openai.APIStatusError):
            logger.error("%s request failed. Status: %s", self.label, exc.status_code)
            return decode_error_envelope(exc.status_code, status_error_body(exc), self.label)
        return NetworkError(f"{self.label} request failed: {exc}")

    def _build_request(
        self,
        messages: list[ChatMessage],
        model: str,
        options: GenerationOptions | None,
    ) -> dict[str, Any]:
        payload = [{"role": msg.role, "content": msg.content} for msg in messages]
        request: dict[str, Any] = {"model": model, "messages": payload}
        if options is None:
            return request
        if options.system_prompt:
            payload.insert(0, {"role": "system", "content": options.system_prompt})
        if options.temperature is not None:
            request["temperature"] = options.temperature
        if options.top_p is not None:
            request["top_p"] = options.top_p
        if options.max_tokens is not None:
            request["max_tokens"] = options.max_tokens
        return request

    async def fetch_available_models(self) -> list[str]:
        """List chat-capable models in the order the API reports them."""
        client = await self._get_client()
        try:
            models = [model.id async for model in client.models.list()]
        except (openai.APIStatusError, openai.APIConnectionError) as e:
            raise self._translate(e) from e
        return [model_id for model_id in models if self.is_chat_model(model_id)]

    async def chat_completion_stream(
        self,
        messages: list[ChatMessage],
        model: str,
        options: GenerationOptions | None = None,
    ) -> StreamingResponse:
        """Stream a chat completion.

        Args:
            messages: Conversation history
            model: Model id (e.g. "gpt-4o")
            options: Generation parameters

        Returns:
            StreamingResponse yielding ``choices[0].delta.content`` fragments
        """
        request = self._build_request(messages, model, options)
        token = CancellationToken()
        return self._register_stream(StreamingResponse(self._stream_generator(request, token), token))

    async def _stream_generator(
        self,
        request: dict[str, Any],
        token: CancellationToken,
    ) -> AsyncIterator[str]:
        """Internal generator decoding the raw SSE body."""
        client = await self._get_client()
        try:
            async with client.chat.completions.with_streaming_response.create(
                stream=True, **request
            ) as response:
                async for event in iter_sse_events(response.iter_lines()):
                    if token.cancelled:
                        return
                    if event.data == DONE_SENTINEL:
                        return

                    chunk = parse_json_line(event.data, self.label)
                    if chunk is None:
                        continue
                    raise_for_stream_error(chunk, self.label)

                    choices = chunk.get("choices")
                    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
                        continue
                    choice = choices[0]
                    delta = choice.get("delta")
                    if isinstance(delta, dict):
                        content = delta.get("content")
                        if isinstance(content, str) and content:
                            yield content
                    if choice.get("finish_reason") == "stop":
                        return
        except (openai.APIStatusError, openai.APIConnectionError, httpx.HTTPError) as e:
            raise self._translate(e) from e

    async def single_chat_completion(
        self,
        message: str,
        model: str,
        options: GenerationOptions | None = None,
    ) -> str:
        """Generate a non-streaming completion for one user message."""
        client = await self._get_client()
        request = self._build_request([ChatMessage(role="user", content=message)], model, options)
        try:
            completion = await client.chat.completions.create(**request)
        except (openai.APIStatusError, openai.APIConnectionError) as e:
            raise self._translate(e) from e

        if not completion.choices:
            raise ParseError(f"{self.label} returned no choices")
        content = completion.choices[0].message.content
        if content is None:
            raise ParseError(f"{self.label} returned an empty message")
        return content.strip()
