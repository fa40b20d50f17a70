"""Exception hierarchy shared by every gemini-chat component."""

from __future__ import annotations


class GeminiChatError(Exception):
    """Base class for all gemini-chat errors."""


class ConfigError(GeminiChatError):
    """Missing/placeholder API key or an unparseable configuration value."""


class BuildError(GeminiChatError):
    """A request payload could not be assembled."""


class EncodingError(BuildError):
    """An attachment could not be read for Base64 encoding."""


class StreamError(GeminiChatError):
    """The provider call failed."""


class TransportError(StreamError):
    """Connection refused, timed out, or closed before a finish signal.

    Safe to retry at the caller's discretion; never retried internally.
    """


class ApiError(StreamError):
    """The provider returned a structured error object."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ParseError(GeminiChatError):
    """A JSON document (response body or local file) could not be parsed."""


class StreamParseError(ParseError):
    """A single SSE data frame was not valid JSON."""


class StorageError(GeminiChatError):
    """Local filesystem failure while reading or writing the workspace."""


class NotFoundError(StorageError):
    """A requested history entry does not exist."""


class LockTimeoutError(StorageError):
    """Another process held the workspace lock for longer than the timeout."""


class TurnCancelled(GeminiChatError):
    """The caller cancelled a streaming turn before it completed."""
