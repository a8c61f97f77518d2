"""Provider factory functions for CLI.

Centralizes creation of the repository, credential store and provider
registry from environment variables. Hides configuration details from
command implementations.
"""

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

from ..config import DEFAULT_CREDENTIALS_NAME, DEFAULT_DB_NAME, data_dir, load_settings_from_env
from ..credentials import ChainedCredentialStore, CredentialStore, EnvCredentialStore, FileCredentialStore
from ..llm import LLMManager, create_provider_registry
from ..models import LLMProviderType, Settings
from ..storage import ChatRepository, create_chat_repository

# Default console for output
_console = Console()


def configure_logging(verbose: bool = False, console: Console | None = None) -> None:
    """Route library logging through Rich.

    Environment variables:
        CHATRELAY_LOG_LEVEL: Level name used when --verbose is not given (default: WARNING)
    """
    level = "DEBUG" if verbose else os.getenv("CHATRELAY_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console or _console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def get_credentials() -> CredentialStore:
    """Create the credential store.

    Keys saved with ``set-key`` live in a 0600 JSON file; environment
    variables such as OPENAI_API_KEY are used when the file has no entry.

    Environment variables:
        CHATRELAY_CREDENTIALS_PATH: Credential file (default: <data dir>/credentials.json)
    """
    path = os.getenv("CHATRELAY_CREDENTIALS_PATH") or data_dir() / DEFAULT_CREDENTIALS_NAME
    return ChainedCredentialStore(FileCredentialStore(path), EnvCredentialStore())


def get_repository() -> ChatRepository:
    """Create the chat repository.

    Environment variables:
        CHATRELAY_STORAGE: "sqlite" or "memory" (default: sqlite)
        CHATRELAY_DB_PATH: SQLite file (default: <data dir>/chatrelay.db)
    """
    backend = os.getenv("CHATRELAY_STORAGE", "sqlite").lower()
    if backend == "memory":
        return create_chat_repository("memory")
    path = os.getenv("CHATRELAY_DB_PATH") or data_dir() / DEFAULT_DB_NAME
    return create_chat_repository("sqlite", path=path)


def get_settings(stored: Settings | None = None) -> Settings:
    """Provider settings from the environment, layered over stored settings.

    Stored per-installation fields (default model, last drafting app) are
    kept; provider configs always come from the environment.
    """
    env_settings = load_settings_from_env()
    if stored is None:
        return env_settings
    for provider in LLMProviderType:
        setattr(stored, provider.value, env_settings.config_for(provider))
    return stored


def get_manager(settings: Settings, credentials: CredentialStore | None = None) -> LLMManager:
    """Create an LLM manager over one client per provider."""
    registry = create_provider_registry(settings, credentials or get_credentials())
    return LLMManager(registry)
