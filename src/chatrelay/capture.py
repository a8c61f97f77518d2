"""Text captured from another application, attached to outgoing messages.

Capture is best-effort: implementations return an empty string or None
instead of raising when the target application or permission is missing.
"""

from typing import Protocol


class TextCapture(Protocol):
    """Reads the selected (or visible) text of a running application."""

    def get_selected_or_view_text(self, app_id: str) -> str:
        ...

    def get_current_file_extension(self, app_id: str) -> str | None:
        ...


class NullTextCapture:
    """Captures nothing. Default when no capture backend is configured."""

    def get_selected_or_view_text(self, app_id: str) -> str:
        return ""

    def get_current_file_extension(self, app_id: str) -> str | None:
        return None


class StaticTextCapture:
    """Returns fixed text for every application; used by the CLI and tests."""

    def __init__(self, text: str = "", extension: str | None = None):
        self.text = text
        self.extension = extension

    def get_selected_or_view_text(self, app_id: str) -> str:
        return self.text

    def get_current_file_extension(self, app_id: str) -> str | None:
        return self.extension


def compose_message(text: str | None, captured: str | None, extension: str | None = None) -> str | None:
    """Attach captured text to a user message as a fenced block.

    Args:
        text: What the user typed
        captured: Text captured from the drafting application
        extension: File extension of the captured text, with or without dots

    Returns:
        The message to send, or None when there is nothing to send
    """
    if captured:
        language = (extension or "").replace(".", "") or "txt"
        block = f"```{language}\n{captured}\n```"
        if text:
            return f"{text}\n\n---\n{block}"
        return block
    return text or None
