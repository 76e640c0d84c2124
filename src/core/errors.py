"""Error taxonomy shared by the core and the adapters.

Adapters translate SDK exceptions into these types at the boundary so the
stores never depend on backend-specific exception classes.
"""

from __future__ import annotations

from typing import Optional


class ChatError(Exception):
    """Base class for all errors raised by the chat core."""


class TransportError(ChatError):
    """The backend was unreachable or rejected the request."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class ValidationError(ChatError):
    """Input rejected locally before any network call."""


class InvalidOperation(ValidationError):
    """The requested operation is not allowed (e.g. chatting with yourself)."""


class ConflictError(ChatError):
    """A uniqueness constraint was violated on insert."""


class NotAuthenticated(ChatError):
    """No current identity; the operation needs a signed-in user."""


class AuthError(ChatError):
    """The identity provider rejected the credentials or request."""
