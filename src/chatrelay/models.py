"""Domain data models.

These models define conversations, messages, models and settings
independently of the storage backend and of any provider wire format.
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from .config import (
    ANTHROPIC_KEY_NAME,
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    GEMINI_KEY_NAME,
    OLLAMA_DEFAULT_URL,
    OPENAI_KEY_NAME,
    PLACEHOLDER_TITLE,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class Role(str, Enum):
    """Author of a message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class LLMProviderType(str, Enum):
    """Closed set of supported LLM backends."""

    OLLAMA = "ollama"
    OPENAI = "openai"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"

    @property
    def label(self) -> str:
        return {
            LLMProviderType.OLLAMA: "Ollama",
            LLMProviderType.OPENAI: "OpenAI",
            LLMProviderType.GEMINI: "Gemini",
            LLMProviderType.ANTHROPIC: "Anthropic",
        }[self]


class DraftApp(str, Enum):
    """Applications text can be captured from."""

    XCODE = "Xcode"
    EMACS = "Emacs"

    @property
    def app_id(self) -> str:
        return {
            DraftApp.XCODE: "com.apple.dt.Xcode",
            DraftApp.EMACS: "org.gnu.Emacs",
        }[self]


class Message(BaseModel):
    """One turn in a conversation.

    ``text`` grows incrementally while ``streaming`` is true.
    """

    id: str = Field(default_factory=_new_id)
    role: Role
    text: str = ""
    timestamp: datetime = Field(default_factory=utc_now)
    streaming: bool = False


class ChatModel(BaseModel):
    """A named model exposed by a provider.

    Identity is the ``(name, provider)`` pair; two providers may expose
    identically named models without colliding.
    """

    name: str = Field(description="Provider-native model identifier")
    provider: LLMProviderType
    display_name: str = Field(default="", description="User-facing label, defaults to name")
    enabled: bool = True
    last_used: datetime | None = None

    # Optional per-model generation overrides
    temperature: float | None = None
    top_p: float | None = None
    max_tokens: int | None = None
    system_prompt: str | None = None

    @model_validator(mode="after")
    def _default_display_name(self) -> "ChatModel":
        if not self.display_name:
            self.display_name = self.name
        return self

    @property
    def key(self) -> tuple[str, LLMProviderType]:
        return (self.name, self.provider)

    @property
    def id(self) -> str:
        return f"{self.provider.value}:{self.name}"

    def same_model(self, other: "ChatModel | None") -> bool:
        return other is not None and self.key == other.key


class Conversation(BaseModel):
    """A sequence of messages bound to one model."""

    id: str = Field(default_factory=_new_id)
    title: str = PLACEHOLDER_TITLE
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    model: ChatModel
    messages: list[Message] = Field(default_factory=list)

    def touch(self) -> None:
        """Bump ``updated_at`` after a mutation."""
        self.updated_at = utc_now()

    def append_message(self, message: Message) -> None:
        self.messages.append(message)
        self.touch()

    @property
    def needs_title(self) -> bool:
        return self.title == PLACEHOLDER_TITLE

    @property
    def streaming_message(self) -> Message | None:
        return next((m for m in self.messages if m.streaming), None)

    def chronological_messages(self) -> list[Message]:
        return sorted(self.messages, key=lambda m: m.timestamp)


class ProviderConfig(BaseModel):
    """Per-provider settings."""

    enabled: bool = False
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    endpoint_url: str | None = Field(default=None, description="Local provider only")
    api_key_name: str | None = Field(default=None, description="Credential name, cloud providers only")


class Settings(BaseModel):
    """Installation-wide settings aggregate."""

    id: str = Field(default_factory=_new_id)
    default_model: ChatModel | None = None
    last_app_drafted_with: DraftApp | None = None

    ollama: ProviderConfig = Field(
        default_factory=lambda: ProviderConfig(endpoint_url=OLLAMA_DEFAULT_URL)
    )
    openai: ProviderConfig = Field(
        default_factory=lambda: ProviderConfig(api_key_name=OPENAI_KEY_NAME)
    )
    gemini: ProviderConfig = Field(
        default_factory=lambda: ProviderConfig(api_key_name=GEMINI_KEY_NAME)
    )
    anthropic: ProviderConfig = Field(
        default_factory=lambda: ProviderConfig(api_key_name=ANTHROPIC_KEY_NAME)
    )

    def config_for(self, provider: LLMProviderType) -> ProviderConfig:
        return getattr(self, provider.value)

    def enabled_providers(self) -> list[LLMProviderType]:
        return [p for p in LLMProviderType if self.config_for(p).enabled]
