"""Google Gemini LLM provider implementation.

Uses the official Google GenAI SDK for model listing and single-shot
completions. Streaming posts to ``:streamGenerateContent?alt=sse`` with httpx
and decodes the SSE body line by line.
Reference: https://github.com/googleapis/python-genai

Note: Gemini can return empty responses due to safety filtering or service
issues, so single-shot completions retry on empty output.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from ...config import GEMINI_BASE_URL, GEMINI_KEY_NAME, REQUEST_TIMEOUT
from ...errors import AuthError, NetworkError, ParseError, ProviderError
from ...models import LLMProviderType
from ..base import APIKeyProvider
from ..models import CancellationToken, ChatMessage, GenerationOptions, StreamingResponse
from ..wire import decode_error_envelope, iter_sse_events, parse_json_line, raise_for_stream_error

logger = logging.getLogger(__name__)

MODEL_PREFIX = "models/"


def _role_for(role: str) -> str:
    # Gemini calls the assistant "model"
    return "model" if role == "assistant" else role


class GeminiProvider(APIKeyProvider):
    """Google Gemini LLM provider implementation.

    Hidden design decisions:
    - Google GenAI client initialization
    - Role mapping (``assistant`` -> ``model``) and ``systemInstruction``
    - camelCase ``generationConfig`` on the raw stream
    - Retry logic for empty responses (known Gemini issue)
    """

    provider_type = LLMProviderType.GEMINI
    default_key_name = GEMINI_KEY_NAME

    def __init__(
        self,
        api_key: str | None = None,
        credentials: Any = None,
        key_name: str | None = None,
        base_url: str = GEMINI_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
        max_retries: int = 3,
        http_client: httpx.AsyncClient | None = None,
        **client_kwargs: Any
    ):
        """Initialize Gemini provider.

        Args:
            api_key: Google AI API key (takes precedence over the credential store)
            credentials: CredentialStore the key is loaded from on each call
            key_name: Credential name (default: "gemini_api_key")
            base_url: API root used by the raw stream
            timeout: Stream request timeout in seconds
            max_retries: Max attempts for empty single-shot responses
            http_client: httpx client for the raw stream (created if omitted)
            **client_kwargs: Additional kwargs for genai.Client
        """
        super().__init__(api_key=api_key, credentials=credentials, key_name=key_name)
        self._base_url = base_url.rstrip("/")
        self._max_retries = max_retries
        self._client_kwargs = client_kwargs
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    def _build_client(self, api_key: str) -> genai.Client:
        return genai.Client(api_key=api_key, **self._client_kwargs)

    async def _close_client(self, client: Any) -> None:
        # The GenAI client holds no connections that need explicit closing
        pass

    def _translate(self, exc: Exception) -> Exception:
        if isinstance(exc, genai_errors.APIError):
            message = exc.message or str(exc)
            logger.error("%s request failed. Status: %s %s", self.label, exc.code, message)
            if exc.code in (401, 403) or "api key" in message.lower():
                return AuthError(self.label, message)
            return ProviderError(exc.status or exc.code, message, status_code=exc.code)
        return NetworkError(f"{self.label} request failed: {exc}")

    def _filter_messages(self, messages: list[ChatMessage]) -> tuple[list[str], list[ChatMessage]]:
        """Split system text from the conversation and drop empty messages."""
        system_parts: list[str] = []
        conversation: list[ChatMessage] = []
        for msg in messages:
            if not msg.content.strip():
                continue
            if msg.role == "system":
                system_parts.append(msg.content)
            else:
                conversation.append(msg)
        return system_parts, conversation

    def _build_stream_body(
        self,
        messages: list[ChatMessage],
        options: GenerationOptions | None,
    ) -> dict[str, Any]:
        system_parts, conversation = self._filter_messages(messages)
        if options is not None and options.system_prompt:
            system_parts.insert(0, options.system_prompt)

        body: dict[str, Any] = {
            "contents": [
                {"role": _role_for(msg.role), "parts": [{"text": msg.content}]}
                for msg in conversation
            ],
        }
        if system_parts:
            body["systemInstruction"] = {"parts": [{"text": text} for text in system_parts]}

        if options is not None:
            generation_config: dict[str, Any] = {}
            if options.temperature is not None:
                generation_config["temperature"] = options.temperature
            if options.top_p is not None:
                generation_config["topP"] = options.top_p
            if options.max_tokens is not None:
                generation_config["maxOutputTokens"] = options.max_tokens
            if generation_config:
                body["generationConfig"] = generation_config
        return body

    def _build_config(self, options: GenerationOptions | None) -> types.GenerateContentConfig:
        if options is None:
            return types.GenerateContentConfig()
        return types.GenerateContentConfig(
            temperature=options.temperature,
            top_p=options.top_p,
            max_output_tokens=options.max_tokens,
            system_instruction=options.system_prompt or None,
        )

    @staticmethod
    def _extract_chunk_text(chunk: dict[str, Any]) -> str:
        """Join the text parts of the first candidate, skipping thoughts."""
        candidates = chunk.get("candidates")
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            return ""
        content = candidates[0].get("content")
        if not isinstance(content, dict):
            return ""
        parts = content.get("parts")
        if not isinstance(parts, list):
            return ""
        return "".join(
            part["text"]
            for part in parts
            if isinstance(part, dict) and isinstance(part.get("text"), str) and not part.get("thought")
        )

    def _extract_content(self, response: types.GenerateContentResponse) -> str:
        """Extract text content from an SDK response, handling empty responses."""
        if response.candidates:
            candidate = response.candidates[0]
            if candidate.content and candidate.content.parts:
                texts = [part.text for part in candidate.content.parts if part.text and not part.thought]
                if texts:
                    return "".join(texts)
        return ""

    async def fetch_available_models(self) -> list[str]:
        """List models that support content generation, without the ``models/`` prefix."""
        client = await self._get_client()
        names: list[str] = []
        try:
            async for model in await client.aio.models.list():
                actions = model.supported_actions
                if actions is not None and "generateContent" not in actions:
                    continue
                name = model.name or ""
                names.append(name[len(MODEL_PREFIX):] if name.startswith(MODEL_PREFIX) else name)
        except (genai_errors.APIError, httpx.HTTPError) as e:
            raise self._translate(e) from e
        return [name for name in names if name]

    async def chat_completion_stream(
        self,
        messages: list[ChatMessage],
        model: str,
        options: GenerationOptions | None = None,
    ) -> StreamingResponse:
        """Stream a chat completion.

        Args:
            messages: Conversation history; empty messages are dropped
            model: Model name without the ``models/`` prefix
            options: Generation parameters

        Returns:
            StreamingResponse yielding candidate text of each SSE event
        """
        body = self._build_stream_body(messages, options)
        token = CancellationToken()
        return self._register_stream(StreamingResponse(self._stream_generator(model, body, token), token))

    async def _stream_generator(
        self,
        model: str,
        body: dict[str, Any],
        token: CancellationToken,
    ) -> AsyncIterator[str]:
        """Internal generator decoding the raw SSE body."""
        api_key = self._require_api_key()
        url = f"{self._base_url}/v1beta/models/{model}:streamGenerateContent"
        try:
            async with self._http.stream(
                "POST", url, params={"alt": "sse", "key": api_key}, json=body
            ) as response:
                if not response.is_success:
                    error_body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(
                        "%s stream failed. Status: %s Body: %s", self.label, response.status_code, error_body
                    )
                    raise decode_error_envelope(response.status_code, error_body, self.label)

                async for event in iter_sse_events(response.aiter_lines()):
                    if token.cancelled:
                        return
                    chunk = parse_json_line(event.data, self.label)
                    if chunk is None:
                        continue
                    raise_for_stream_error(chunk, self.label)

                    text = self._extract_chunk_text(chunk)
                    if text:
                        yield text
        except httpx.HTTPError as e:
            raise NetworkError(f"{self.label} stream failed: {e}") from e

    async def single_chat_completion(
        self,
        message: str,
        model: str,
        options: GenerationOptions | None = None,
    ) -> str:
        """Generate a non-streaming completion for one user message.

        Includes retry logic for empty responses (known Gemini service issue).
        """
        client = await self._get_client()
        contents = [types.Content(role="user", parts=[types.Part(text=message)])]
        config = self._build_config(options)

        content = ""
        for attempt in range(self._max_retries):
            try:
                response = await client.aio.models.generate_content(
                    model=model, contents=contents, config=config
                )
            except (genai_errors.APIError, httpx.HTTPError) as e:
                raise self._translate(e) from e

            content = self._extract_content(response)
            if content:
                break

            # Empty response - wait briefly before retry
            if attempt < self._max_retries - 1:
                await asyncio.sleep(0.5 * (attempt + 1))

        if not content:
            raise ParseError(f"{self.label} returned an empty response")
        return content.strip()

    async def close(self) -> None:
        """Close the stream HTTP client if this provider created it."""
        await super().close()
        if self._owns_http_client:
            await self._http.aclose()
