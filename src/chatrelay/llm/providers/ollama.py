"""Local inference server (Ollama) provider implementation.

Speaks the server's HTTP API directly with httpx:
- GET  /api/tags    model listing
- POST /api/chat    newline-delimited JSON stream, one object per delta
- POST /api/pull    newline-delimited JSON progress stream
- DELETE /api/delete
"""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from ...config import OLLAMA_DEFAULT_URL, REQUEST_TIMEOUT
from ...errors import NetworkError, ParseError, ProviderError
from ...models import LLMProviderType
from ..base import LLMProvider
from ..models import CancellationToken, ChatMessage, GenerationOptions, StreamingResponse
from ..wire import decode_error_envelope, parse_json_line, raise_for_stream_error

logger = logging.getLogger(__name__)


class OllamaProvider(LLMProvider):
    """Local inference server provider.

    Hidden design decisions:
    - NDJSON stream framing and the ``done`` end-of-stream flag
    - Option names (``num_predict`` for max tokens)
    - System prompt delivered as a leading system message
    """

    provider_type = LLMProviderType.OLLAMA

    def __init__(
        self,
        base_url: str = OLLAMA_DEFAULT_URL,
        timeout: float = REQUEST_TIMEOUT,
        **client_kwargs: Any
    ):
        """Initialize the local provider.

        Args:
            base_url: Server endpoint (default: http://localhost:11434)
            timeout: Per-request timeout in seconds
            **client_kwargs: Additional kwargs for httpx.AsyncClient
        """
        super().__init__()
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self._base_url, timeout=timeout, **client_kwargs)

    @property
    def base_url(self) -> str:
        return self._base_url

    def _build_options(self, options: GenerationOptions | None) -> dict[str, Any]:
        if options is None:
            return {}
        built: dict[str, Any] = {}
        if options.temperature is not None:
            built["temperature"] = options.temperature
        if options.top_p is not None:
            built["top_p"] = options.top_p
        if options.max_tokens is not None:
            built["num_predict"] = options.max_tokens
        return built

    def _build_messages(
        self,
        messages: list[ChatMessage],
        options: GenerationOptions | None,
    ) -> list[dict[str, str]]:
        payload = [{"role": msg.role, "content": msg.content} for msg in messages]
        if options is not None and options.system_prompt:
            payload.insert(0, {"role": "system", "content": options.system_prompt})
        return payload

    def _build_request(
        self,
        messages: list[ChatMessage],
        model: str,
        options: GenerationOptions | None,
        stream: bool,
    ) -> dict[str, Any]:
        request: dict[str, Any] = {
            "model": model,
            "messages": self._build_messages(messages, options),
            "stream": stream,
        }
        built_options = self._build_options(options)
        if built_options:
            request["options"] = built_options
        return request

    async def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        body = (await response.aread()).decode("utf-8", errors="replace")
        logger.error("%s request failed. Status: %s Body: %s", self.label, response.status_code, body)
        raise decode_error_envelope(response.status_code, body, self.label)

    async def fetch_available_models(self) -> list[str]:
        """List locally installed models."""
        try:
            response = await self._client.get("/api/tags")
            await self._raise_for_status(response)
        except httpx.HTTPError as e:
            raise NetworkError(f"{self.label} is unreachable: {e}") from e

        try:
            models = response.json()["models"]
            return [m["name"] for m in models if isinstance(m, dict) and "name" in m]
        except (ValueError, KeyError, TypeError) as e:
            raise ParseError(f"Invalid {self.label} model listing") from e

    async def chat_completion_stream(
        self,
        messages: list[ChatMessage],
        model: str,
        options: GenerationOptions | None = None,
    ) -> StreamingResponse:
        """Stream a chat completion from the local server.

        Args:
            messages: Conversation history
            model: Installed model name (e.g. "llama3.2:latest")
            options: Generation parameters

        Returns:
            StreamingResponse yielding ``message.content`` of each NDJSON object
        """
        request = self._build_request(messages, model, options, stream=True)
        token = CancellationToken()
        return self._register_stream(StreamingResponse(self._stream_generator(request, token), token))

    async def _stream_generator(
        self,
        request: dict[str, Any],
        token: CancellationToken,
    ) -> AsyncIterator[str]:
        """Internal generator decoding the NDJSON chat stream."""
        try:
            async with self._client.stream("POST", "/api/chat", json=request) as response:
                await self._raise_for_status(response)

                async for line in response.aiter_lines():
                    if token.cancelled:
                        return
                    if not line.strip():
                        continue

                    chunk = parse_json_line(line, self.label)
                    if chunk is None:
                        continue
                    raise_for_stream_error(chunk, self.label)

                    message = chunk.get("message")
                    if isinstance(message, dict):
                        content = message.get("content")
                        if isinstance(content, str) and content:
                            yield content

                    if chunk.get("done") is True:
                        return
        except httpx.HTTPError as e:
            raise NetworkError(f"{self.label} stream failed: {e}") from e

    async def single_chat_completion(
        self,
        message: str,
        model: str,
        options: GenerationOptions | None = None,
    ) -> str:
        """Generate a non-streaming completion for one user message."""
        request = self._build_request(
            [ChatMessage(role="user", content=message)], model, options, stream=False
        )
        try:
            response = await self._client.post("/api/chat", json=request)
            await self._raise_for_status(response)
        except httpx.HTTPError as e:
            raise NetworkError(f"{self.label} request failed: {e}") from e

        try:
            content = response.json()["message"]["content"]
        except (ValueError, KeyError, TypeError) as e:
            raise ParseError(f"Invalid {self.label} response format: {response.text[:200]}") from e
        if not isinstance(content, str):
            raise ParseError(f"Invalid {self.label} response format: {response.text[:200]}")
        return content.strip()

    async def pull_model(self, model: str) -> AsyncIterator[dict[str, Any]]:
        """Download a model, yielding the server's progress objects.

        Yields:
            Dicts such as {"status": "pulling manifest"} or
            {"status": "downloading", "total": ..., "completed": ...}
        """
        try:
            async with self._client.stream(
                "POST", "/api/pull", json={"model": model, "stream": True}, timeout=None
            ) as response:
                await self._raise_for_status(response)
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    progress = parse_json_line(line, self.label)
                    if progress is None:
                        continue
                    raise_for_stream_error(progress, self.label)
                    yield progress
        except httpx.HTTPError as e:
            raise NetworkError(f"{self.label} pull failed: {e}") from e

    async def delete_model(self, model: str) -> None:
        """Remove an installed model.

        Raises:
            ProviderError: Model not found (code 404) or rejected by the server
        """
        try:
            response = await self._client.request(
                "DELETE", "/api/delete", content=json.dumps({"model": model}),
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            raise NetworkError(f"{self.label} delete failed: {e}") from e

        if response.status_code == 404:
            raise ProviderError(404, response.text or "Model not found", status_code=404)
        await self._raise_for_status(response)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
