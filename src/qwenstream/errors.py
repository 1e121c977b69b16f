"""Exception types raised by qwenstream."""

from __future__ import annotations


class QwenStreamError(Exception):
    """Base for all qwenstream errors."""


class ConfigurationError(QwenStreamError):
    """Raised when a provider is missing required settings."""


class ChunkParseError(QwenStreamError):
    """Raised when a single SSE payload cannot be decoded.

    Recoverable: the decoder logs it and moves on to the next message.
    """

    def __init__(self, message: str, data: str = "") -> None:
        super().__init__(message)
        self.data = data


class TransportError(QwenStreamError):
    """Raised when the HTTP connection or SSE framing fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderError(QwenStreamError):
    """An error frame reported by the DashScope API itself."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class StreamError(QwenStreamError):
    """Raised by :func:`qwenstream.decoder.collect` when a stream fails."""
