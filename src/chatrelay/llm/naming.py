"""Human-readable display names for provider model ids.

    >>> pretty_model_name("claude-3-5-haiku-20241022")
    'Claude 3.5 Haiku'
    >>> pretty_model_name("gemini-1.5-flash-001")
    'Gemini 1.5 Flash'
    >>> pretty_model_name("gpt-4o-mini")
    'GPT 4o Mini'
    >>> pretty_model_name("hf.co/bartowski/gemma-2-9b:Q4_K_M")
    'Gemma 2 9b Q4 K M'
"""

import re

_GEMINI_MARKERS = ("gemini", "bison", "gecko")
_OPENAI_MARKERS = ("gpt-", "text-embedding", "dall-e", "whisper", "tts-")
_LOCAL_MARKERS = ("gemma", "qwen", "deepseek", "olmo", "llama", "mistral", "phi")
_LOCAL_SEPARATORS = re.compile(r"[_\-:]")

# Claude snapshot dates ("20241022") are not part of the version
_MAX_VERSION_PART = 8


def _is_version(part: str) -> bool:
    return "." in part or part.isdigit()


def _pretty_claude(name: str) -> str:
    parts = name.lower().replace("claude-", "", 1).split("-")
    version: list[str] = []
    family = ""
    for part in parts:
        if _is_version(part) and len(part) < _MAX_VERSION_PART:
            version.append(part)
        elif not family and part.isalpha() and len(part) > 2:
            family = part.capitalize()
    return " ".join(piece for piece in ("Claude", ".".join(version), family) if piece)


def _pretty_gemini(name: str) -> str:
    if "bison" in name:
        return "Chat Bison" if "chat" in name else "Text Bison"
    if "gecko" in name:
        return "Gecko Embedding"
    if "embedding" in name:
        return "Gemini Embedding"
    if "imagen" in name:
        return "Imagen"

    words = ["Gemini"]
    version_seen = False
    for part in name.replace("gemini-", "", 1).split("-"):
        if _is_version(part):
            if not version_seen:
                words.append(part)
                version_seen = True
        elif part and "exp" not in part and "preview" not in part and "thinking" not in part:
            words.append(part.capitalize())
    return " ".join(words)


def _pretty_openai(name: str) -> str:
    words = [word.capitalize() for word in name.split("-") if word]
    return " ".join("GPT" if word == "Gpt" else word for word in words)


def _pretty_local(name: str) -> str:
    base = _LOCAL_SEPARATORS.sub(" ", name.replace("hf.co/", "")).split("/")[-1]
    return " ".join(word.capitalize() for word in base.split())


def pretty_model_name(name: str) -> str:
    """Prettify a model id, or return it unchanged when no rule matches."""
    lowered = name.lower()
    if "claude" in lowered:
        return _pretty_claude(name)
    if any(marker in lowered for marker in _GEMINI_MARKERS):
        return _pretty_gemini(lowered)
    if any(marker in lowered for marker in _OPENAI_MARKERS):
        return _pretty_openai(lowered)
    if any(marker in lowered for marker in _LOCAL_MARKERS):
        return _pretty_local(name)
    return name
