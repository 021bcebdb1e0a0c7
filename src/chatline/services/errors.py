"""Error taxonomy for the real-time messaging core.

Authentication errors are fatal to a connection attempt. Everything else is
recovered at the gateway and reported back to the originating connection as
a ``messageError`` event.
"""

from __future__ import annotations

from typing import Any


class ChatError(RuntimeError):
    """Base exception for messaging failures.

    Attributes:
        code: Stable machine-readable identifier sent to clients.
        details: Optional structured context (validation errors, ids).
    """

    code = "chat_error"
    default_message = "Chat operation failed"

    def __init__(self, message: str | None = None, *, details: Any = None) -> None:
        super().__init__(message or self.default_message)
        self.details = details

    @property
    def message(self) -> str:
        return str(self)

    def to_payload(self) -> dict[str, Any]:
        """Render the error as a ``messageError`` payload."""
        payload: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class AuthenticationError(ChatError):
    """Raised when a connection cannot be bound to a user identity."""

    code = "authentication_error"
    default_message = "Authentication error"


class Unauthenticated(AuthenticationError):
    code = "unauthenticated"
    default_message = "Access token required"


class InvalidCredential(AuthenticationError):
    code = "invalid_credential"
    default_message = "Invalid token"


class CredentialExpired(AuthenticationError):
    code = "credential_expired"
    default_message = "Token expired"


class IdentityNotFound(AuthenticationError):
    code = "identity_not_found"
    default_message = "User not found"


class InvalidRequest(ChatError):
    """Raised for malformed client payloads."""

    code = "invalid_request"
    default_message = "Invalid request"


class RecipientNotFound(InvalidRequest):
    code = "recipient_not_found"
    default_message = "Recipient not found"


class MessageNotFound(InvalidRequest):
    code = "message_not_found"
    default_message = "Message not found"


class NotAuthorized(ChatError):
    code = "not_authorized"
    default_message = "You can only message friends"


class PersistenceFailure(ChatError):
    """Raised when the durable store rejects or fails an operation."""

    code = "persistence_failure"
    default_message = "Failed to send message"
