"""Pydantic schemas and serializers for the Chatline API."""

from .events import (
    ClientEvent,
    ConversationTarget,
    MarkAsReadPayload,
    SendMessagePayload,
    TypingPayload,
    UpdateStatusPayload,
)
from .message import (
    ConversationSummary,
    MessageHistoryResponse,
    MessageStatusUpdate,
    UnreadCountResponse,
    serialize_message,
)
from .user import serialize_user

__all__ = [
    "ClientEvent",
    "ConversationTarget",
    "MarkAsReadPayload",
    "SendMessagePayload",
    "TypingPayload",
    "UpdateStatusPayload",
    "ConversationSummary",
    "MessageHistoryResponse",
    "MessageStatusUpdate",
    "UnreadCountResponse",
    "serialize_message",
    "serialize_user",
]
