"""Configuration constants.

Centralizes magic numbers, endpoints and credential names used across
chatrelay modules.
"""

import os
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Settings

# Conversation defaults
PLACEHOLDER_TITLE = "New Conversation"  # Signals "needs auto-title"

# Provider endpoints
OLLAMA_DEFAULT_URL = "http://localhost:11434"
OPENAI_BASE_URL = "https://api.openai.com/v1"
GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"
ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_API_VERSION = "2023-06-01"

# Credential names in the credential store
OPENAI_KEY_NAME = "openai_api_key"
GEMINI_KEY_NAME = "gemini_api_key"
ANTHROPIC_KEY_NAME = "anthropic_api_key"

# Generation defaults
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2000
ANTHROPIC_STREAM_MAX_TOKENS = 4096  # Anthropic requires max_tokens
ANTHROPIC_TITLE_MAX_TOKENS = 256
ANTHROPIC_THINKING_BUDGET = 1024

# Streaming configuration
STREAM_BUFFER_THRESHOLD = 50  # Characters before flushing stream buffer
STREAM_FLUSH_INTERVAL = 0.05  # Seconds between forced flushes

# Timeouts (seconds)
MODEL_FETCH_TIMEOUT = 10.0
REQUEST_TIMEOUT = 60.0

# Error banner
ERROR_DISPLAY_SECONDS = 5.0

# Titles longer than this are cut at the limit
TITLE_MAX_LENGTH = 80

# Default file locations
DEFAULT_DATA_DIR = "~/.local/share/chatrelay"
DEFAULT_DB_NAME = "chatrelay.db"
DEFAULT_CREDENTIALS_NAME = "credentials.json"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def data_dir() -> Path:
    return Path(os.getenv("CHATRELAY_DATA_DIR", DEFAULT_DATA_DIR)).expanduser()


def load_settings_from_env() -> "Settings":
    """Build a Settings aggregate from environment variables.

    Environment variables:
        CHATRELAY_OLLAMA_ENABLED: Enable the local server (default: true)
        CHATRELAY_OLLAMA_URL: Local server endpoint (default: http://localhost:11434)
        CHATRELAY_OPENAI_ENABLED: Enable OpenAI (default: true if OPENAI_API_KEY is set)
        CHATRELAY_GEMINI_ENABLED: Enable Gemini (default: true if GEMINI_API_KEY is set)
        CHATRELAY_ANTHROPIC_ENABLED: Enable Anthropic (default: true if ANTHROPIC_API_KEY is set)
        CHATRELAY_TEMPERATURE: Default temperature for every provider
        CHATRELAY_MAX_TOKENS: Default max tokens for every provider
    """
    from .models import Settings

    settings = Settings()
    settings.ollama.enabled = _env_flag("CHATRELAY_OLLAMA_ENABLED", True)
    settings.ollama.endpoint_url = os.getenv("CHATRELAY_OLLAMA_URL", OLLAMA_DEFAULT_URL)
    settings.openai.enabled = _env_flag("CHATRELAY_OPENAI_ENABLED", bool(os.getenv("OPENAI_API_KEY")))
    settings.gemini.enabled = _env_flag("CHATRELAY_GEMINI_ENABLED", bool(os.getenv("GEMINI_API_KEY")))
    settings.anthropic.enabled = _env_flag(
        "CHATRELAY_ANTHROPIC_ENABLED", bool(os.getenv("ANTHROPIC_API_KEY"))
    )

    temperature = os.getenv("CHATRELAY_TEMPERATURE")
    max_tokens = os.getenv("CHATRELAY_MAX_TOKENS")
    for config in (settings.ollama, settings.openai, settings.gemini, settings.anthropic):
        if temperature:
            config.temperature = float(temperature)
        if max_tokens:
            config.max_tokens = int(max_tokens)
    return settings
