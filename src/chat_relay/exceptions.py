"""Domain exception hierarchy for the chat relay client and service."""

from __future__ import annotations


class ChatRelayError(RuntimeError):
    """Base class for all domain-level chat relay errors."""


class ConfigValidationError(ChatRelayError):
    """Raised when configuration cannot be validated safely."""


class CommandValidationError(ChatRelayError):
    """Raised when a slash-command definition is rejected."""


class RequestValidationError(ChatRelayError):
    """Raised when a boundary request is malformed."""


class PersistenceError(ChatRelayError):
    """Raised when local key-value persistence fails."""


class PersistenceFormatError(PersistenceError):
    """Raised when a persisted payload cannot be decoded safely."""


class ProviderError(ChatRelayError):
    """Base class for failures talking to the upstream model provider."""


class ProviderConnectionError(ProviderError):
    """Raised when the provider host cannot be reached."""


class ProviderModelNotFoundError(ProviderError):
    """Raised when the configured model is unavailable upstream."""


class ProviderStreamingError(ProviderError):
    """Raised when streaming fails for non-connectivity reasons."""


class ProxyError(ChatRelayError):
    """Base class for failures between the client and the relay service."""


class ProxyConnectionError(ProxyError):
    """Raised when the relay service cannot be reached."""


class ProxyStatusError(ProxyError):
    """Raised when the relay service answers with a non-success status."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        self.status_code = status_code
        self.detail = detail
        message = f"Relay responded with HTTP {status_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ProxyStreamError(ProxyError):
    """Raised when the response stream breaks after it was opened."""


class AttachmentError(ChatRelayError):
    """Raised when a local image cannot be attached to a message."""
