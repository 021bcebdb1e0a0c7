"""Message-related serializers and response schemas."""

from typing import Any, Literal

from pydantic import BaseModel, Field

from chatline.db.time import isoformat
from chatline.models import Message


def serialize_message(message: Message) -> dict[str, Any]:
    """Serialize a Message row into the wire payload shared by HTTP and WebSocket."""
    return {
        "id": message.id,
        "senderId": message.sender_id,
        "recipientId": message.recipient_id,
        "content": message.content,
        "messageType": message.message_type.value,
        "status": message.status.value,
        "createdAt": isoformat(message.created_at),
        "deliveredAt": isoformat(message.delivered_at),
        "readAt": isoformat(message.read_at),
        "replyTo": message.reply_to_id,
    }


class MessageHistoryResponse(BaseModel):
    """Page of a conversation log."""

    messages: list[dict[str, Any]]
    page: int = Field(..., ge=1)
    limit: int = Field(..., ge=1)
    order: str = Field(..., description="'desc' for newest first, 'asc' for oldest first")


class ConversationSummary(BaseModel):
    """One conversation partner with the latest message and unread count."""

    user_id: str = Field(..., serialization_alias="userId")
    username: str
    display_name: str = Field(..., serialization_alias="displayName")
    profile_picture: str | None = Field(None, serialization_alias="profilePicture")
    is_online: bool = Field(..., serialization_alias="isOnline")
    last_seen: str | None = Field(None, serialization_alias="lastSeen")
    last_message: dict[str, Any] = Field(..., serialization_alias="lastMessage")
    unread_count: int = Field(..., serialization_alias="unreadCount")


class UnreadCountResponse(BaseModel):
    unread_count: int = Field(..., serialization_alias="unreadCount")


class MessageStatusUpdate(BaseModel):
    """Body of the HTTP delivery/read acknowledgement."""

    status: Literal["delivered", "read"]
