"""Pydantic schemas for inbound WebSocket client events."""

from pydantic import BaseModel, ConfigDict, Field

from chatline.models import MessageType


class _ClientPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ClientEvent(BaseModel):
    """Envelope every client frame must follow."""

    event: str = Field(..., min_length=1, description="Event name, e.g. sendMessage")
    data: dict = Field(default_factory=dict, description="Event payload")


class ConversationTarget(_ClientPayload):
    """Payload of ``joinConversation`` and ``leaveConversation``."""

    recipient_id: str = Field(..., alias="recipientId", min_length=1)


class SendMessagePayload(_ClientPayload):
    recipient_id: str = Field(..., alias="recipientId", min_length=1)
    content: str = Field(..., description="Message body; trimmed before storage")
    message_type: MessageType = Field(MessageType.TEXT, alias="messageType")
    reply_to: int | None = Field(None, alias="replyTo", description="Id of the message replied to")


class MarkAsReadPayload(_ClientPayload):
    """Payload of ``markAsRead``.

    ``senderId`` is accepted because clients send it, but it is never used
    for routing: the receipt goes to the sender recorded on the stored
    message.
    """

    message_id: int = Field(..., alias="messageId")
    sender_id: str | None = Field(None, alias="senderId")


class TypingPayload(_ClientPayload):
    recipient_id: str = Field(..., alias="recipientId", min_length=1)
    is_typing: bool = Field(..., alias="isTyping")


class UpdateStatusPayload(_ClientPayload):
    status: str = Field(..., description="Free-text status line")
