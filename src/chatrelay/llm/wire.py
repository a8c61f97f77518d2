"""Line-level decoding shared by the streaming provider clients.

Hides how NDJSON and SSE framing are decoded and how vendor error
envelopes are turned into chatrelay errors.
"""

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import httpx

from ..errors import AuthError, ChatRelayError, NetworkError, ProviderError

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class SSEEvent:
    """One ``data:`` line together with the most recent ``event:`` name."""

    data: str
    event: str | None = None


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[SSEEvent]:
    """Decode SSE framing from an async iterator of text lines.

    Every ``data:`` line is emitted as its own event. A blank line ends the
    current event block and resets the event name; comment lines are ignored.
    """
    event_name: str | None = None
    async for raw_line in lines:
        line = raw_line.rstrip("\r\n")
        if not line:
            event_name = None
            continue
        if line.startswith(":"):
            continue
        if line.startswith("event:"):
            event_name = line[len("event:"):].strip()
            continue
        if line.startswith("data:"):
            data = line[len("data:"):]
            if data.startswith(" "):
                data = data[1:]
            yield SSEEvent(data=data, event=event_name)


def parse_json_line(line: str, provider: str) -> dict[str, Any] | None:
    """Decode one streamed JSON object, or ``None`` if the line is unusable.

    A malformed line is logged and skipped; it never aborts the stream.
    """
    try:
        payload = json.loads(line)
    except ValueError:
        logger.warning("Skipping malformed %s stream line: %.200r", provider, line)
        return None
    if not isinstance(payload, dict):
        logger.warning("Skipping non-object %s stream line: %.200r", provider, line)
        return None
    return payload


def _looks_like_auth_failure(message: str) -> bool:
    lowered = message.lower()
    return "api key" in lowered or "api_key_invalid" in lowered or "x-api-key" in lowered


def decode_error_envelope(status_code: int, body: str, provider: str) -> ChatRelayError:
    """Translate a non-2xx response into the chatrelay error taxonomy.

    Recognized envelopes:
        {"error": {"message": ..., "code"|"type"|"status": ...}}  (OpenAI, Anthropic, Gemini)
        {"error": "..."}                                          (Ollama)

    Args:
        status_code: HTTP status of the response
        body: Fully drained response body
        provider: Provider label used in messages

    Returns:
        AuthError for rejected credentials, ProviderError for a decoded
        envelope, NetworkError carrying the raw status and body otherwise
    """
    message: str | None = None
    code: str | int | None = None

    try:
        payload = json.loads(body) if body else None
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            message = error["message"]
            code = error.get("code") or error.get("type") or error.get("status") or status_code
        elif isinstance(error, str):
            message = error
            code = status_code

    if status_code in (401, 403) or (message is not None and _looks_like_auth_failure(message)):
        return AuthError(provider, message)
    if message is None:
        return NetworkError.from_status(status_code, body)
    return ProviderError(code, message, status_code=status_code)


def raise_for_stream_error(chunk: dict[str, Any], provider: str) -> None:
    """Raise if a decoded stream object is an in-band error envelope."""
    error = chunk.get("error")
    if error is None:
        return
    if isinstance(error, dict):
        code = error.get("code") or error.get("type") or error.get("status")
        raise ProviderError(code, str(error.get("message") or error))
    raise ProviderError(None, str(error))


def status_error_body(exc: Any) -> str:
    """Raw body of an SDK ``APIStatusError``.

    Falls back to the SDK's pre-parsed ``body`` when the response was never
    read.
    """
    try:
        return exc.response.text
    except (httpx.ResponseNotRead, AttributeError):
        body = getattr(exc, "body", None)
        if body is None:
            return ""
        if isinstance(body, str):
            return body
        return json.dumps(body)
