"""Exception types shared by the chat engine and the HTTP boundary.

Every error raised on purpose carries the HTTP status the boundary should
answer with and a message that is safe to show to the end user.
"""

from __future__ import annotations

from typing import Optional


class ChatError(Exception):
    """Base class for errors that map onto an API error response."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ChatError):
    """A required field is missing or malformed."""

    status_code = 400


class AuthError(ChatError):
    """The caller (or the configured provider credential) is not authorised."""

    status_code = 401


class StorageError(ChatError):
    """The persistence backend failed; the current request cannot complete."""

    status_code = 500


class ProviderError(ChatError):
    """The LLM provider could not produce a reply."""

    status_code = 500

    def __init__(self, message: str, http_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.http_status = http_status


class ProviderAuthError(ProviderError, AuthError):
    """The provider rejected the configured credential (HTTP 401)."""

    status_code = 401

    def __init__(self, message: str, http_status: Optional[int] = 401) -> None:
        super().__init__(message, http_status=http_status)


class ProtocolError(ProviderError):
    """The provider answered with a body we do not understand."""


class TransportError(ProviderError):
    """The provider could not be reached (DNS, TLS, timeout, connection)."""


def public_message(exc: ChatError) -> str:
    """Message returned to the API caller for ``exc``."""
    if isinstance(exc, ProviderError):
        return f"AI service error: {exc.message}"
    return exc.message
