"""Error taxonomy shared by every chatrelay module.

Provider clients translate vendor SDK and transport exceptions into these
types, so callers never need to know which provider failed or how.
"""


class ChatRelayError(Exception):
    """Base class for all chatrelay errors."""


class NetworkError(ChatRelayError):
    """Transport or HTTP-layer failure.

    Raised when a request cannot be completed or a non-2xx response carries
    no decodable vendor error envelope.
    """

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)

    @classmethod
    def from_status(cls, status_code: int, body: str) -> "NetworkError":
        return cls(f"HTTP {status_code}: {body or '<no body>'}", status_code=status_code, body=body)


class AuthError(ChatRelayError):
    """Missing or rejected credential for a provider."""

    def __init__(self, provider: str, detail: str | None = None):
        self.provider = provider
        self.detail = detail
        message = f"{provider} API key is missing or invalid"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ProviderError(ChatRelayError):
    """Decoded vendor error envelope."""

    def __init__(self, code: str | int | None, message: str, status_code: int | None = None):
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(f"{message} (code: {code})" if code is not None else message)


class ParseError(ChatRelayError):
    """Response body could not be decoded into the expected shape."""


class StorageError(ChatRelayError):
    """Repository read or write failure."""
