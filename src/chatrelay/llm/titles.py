"""Conversation title generation.

Wraps a fixed instruction prompt around the user's first message, asks the
owning provider for a single-shot completion and sanitizes the output the
same way for every provider.
"""

import re
from typing import TYPE_CHECKING

from ..config import TITLE_MAX_LENGTH
from .models import GenerationOptions

if TYPE_CHECKING:
    from ..models import ChatModel
    from .base import LLMProvider
    from .manager import LLMManager

TITLE_PROMPT = (
    "Summarize the following message into a short title (5 words or less). "
    "Do not include quotes or punctuation. Only output the final short title. "
    "Do not quote it. The output will be used for a conversation title.\n\n"
    "{message}"
)

_REASONING_BLOCK = re.compile(r"<think>[\s\S]*?</think>")
_TITLE_PUNCTUATION = re.compile(r"[\"'.,!?;:]")


def build_title_prompt(text: str) -> str:
    return TITLE_PROMPT.format(message=text)


def sanitize_title(raw_title: str) -> str:
    """Strip reasoning blocks, quotes and punctuation, then whitespace.

    The result is cut to TITLE_MAX_LENGTH characters.
    """
    title = _REASONING_BLOCK.sub("", raw_title)
    title = _TITLE_PUNCTUATION.sub("", title)
    return title.strip()[:TITLE_MAX_LENGTH].rstrip()


async def generate_title(
    provider: "LLMProvider",
    text: str,
    model: str,
    options: GenerationOptions | None = None,
) -> str:
    raw_title = await provider.single_chat_completion(build_title_prompt(text), model, options)
    return sanitize_title(raw_title)


class TitleGenerator:
    """Generates titles through whichever provider serves the model."""

    def __init__(self, manager: "LLMManager"):
        self._manager = manager

    async def generate_title(self, text: str, model: "ChatModel") -> str:
        """Generate a title for ``text`` using ``model``.

        Raises:
            ChatRelayError: Any provider failure; callers treat it as recoverable
        """
        client = self._manager.get_client(model.provider)
        return await client.generate_title(text, model.name, GenerationOptions.for_model(model))
