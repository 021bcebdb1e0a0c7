"""Message delivery pipeline.

Messages move through ``sent -> delivered -> read`` and never backwards.
A send is authorised against the friendship table, persisted, and only then
fanned out to live connections: the stored row is the record, the events
are notifications. Delivery is promoted only when the recipient is online at
send time; there is no catch-up promotion when an offline recipient
reconnects, only an explicit read acknowledgement moves such messages on.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from chatline.core.settings import settings
from chatline.db.time import isoformat, utcnow
from chatline.models import FriendshipStatus, Message, MessageStatus, MessageType
from chatline.schemas.message import serialize_message
from chatline.services.broadcaster import EventBroadcaster
from chatline.services.connection import Connection
from chatline.services.errors import (
    InvalidRequest,
    MessageNotFound,
    NotAuthorized,
    PersistenceFailure,
    RecipientNotFound,
)
from chatline.services.presence import PresenceRegistry
from chatline.services.rooms import RoomManager, room_key

if TYPE_CHECKING:
    from chatline.repositories.chat_repo import ChatStore

logger = logging.getLogger(__name__)


class MessageDeliveryPipeline:
    """Send, promote and acknowledge direct messages."""

    def __init__(
        self,
        store: ChatStore,
        presence: PresenceRegistry,
        rooms: RoomManager,
        broadcaster: EventBroadcaster,
        *,
        max_length: int | None = None,
        status_max_length: int | None = None,
    ) -> None:
        self.store = store
        self.presence = presence
        self.rooms = rooms
        self.broadcaster = broadcaster
        self.max_length = max_length or settings.message_max_length
        self.status_max_length = status_max_length or settings.status_max_length

    # --- send --------------------------------------------------------------------

    def _validate_content(self, content: str, message_type: MessageType | str) -> tuple[str, MessageType]:
        try:
            kind = MessageType(message_type)
        except ValueError as err:
            raise InvalidRequest(
                "Invalid message type",
                details={"messageType": message_type, "allowed": [t.value for t in MessageType]},
            ) from err

        if not isinstance(content, str):
            raise InvalidRequest("Message content is required")
        body = content.strip()
        if not body:
            raise InvalidRequest("Message content is required")
        if len(body) > self.max_length:
            raise InvalidRequest(
                f"Message cannot exceed {self.max_length} characters",
                details={"length": len(body), "maxLength": self.max_length},
            )
        return body, kind

    async def send(
        self,
        sender_id: str,
        recipient_id: str,
        content: str,
        message_type: MessageType | str = MessageType.TEXT,
        *,
        reply_to_id: int | None = None,
        origin: Connection | None = None,
    ) -> Message:
        """Authorise, persist and deliver one message.

        Args:
            sender_id: Authenticated sender.
            recipient_id: Target user.
            content: Message body; trimmed before storage.
            message_type: One of :class:`MessageType`.
            reply_to_id: Optional id of a message in the same conversation.
            origin: The sender's connection that issued the request.

        Returns:
            The persisted message in its final observable state.

        Raises:
            InvalidRequest: Bad content, type or reply reference.
            RecipientNotFound: The recipient does not exist.
            NotAuthorized: Sender and recipient are not accepted friends.
            PersistenceFailure: The store failed; nothing was emitted.
        """
        body, kind = self._validate_content(content, message_type)

        recipient = await self.store.find_user_by_id(recipient_id)
        if recipient is None:
            raise RecipientNotFound(details={"recipientId": recipient_id})

        if reply_to_id is not None:
            parent = await self.store.find_message_by_id(reply_to_id)
            if parent is None or not parent.involves(sender_id, recipient_id):
                raise InvalidRequest(
                    "Replied-to message not found in this conversation",
                    details={"replyTo": reply_to_id},
                )

        friendship = await self.store.friendship_status(sender_id, recipient_id)
        if friendship is not FriendshipStatus.ACCEPTED:
            raise NotAuthorized(details={"recipientId": recipient_id})

        message = await self.store.insert_message(
            sender_id=sender_id,
            recipient_id=recipient_id,
            content=body,
            message_type=kind,
            reply_to_id=reply_to_id,
        )

        sender_connection = origin or self.presence.connection_for(sender_id)
        recipient_connection = self.presence.connection_for(recipient_id)
        await self.broadcaster.fan_out(
            [
                sender_connection,
                recipient_connection,
                *self.rooms.members(room_key(sender_id, recipient_id)),
            ],
            "newMessage",
            {"message": serialize_message(message)},
        )
        logger.info("Message %s sent from %s to %s", message.id, sender_id, recipient_id)

        if recipient_connection is None:
            return message
        return await self._promote_delivered(message, sender_connection)

    async def _promote_delivered(
        self, message: Message, sender_connection: Connection | None
    ) -> Message:
        try:
            delivered = await self.store.update_message_status(
                message.id, MessageStatus.DELIVERED, utcnow()
            )
        except PersistenceFailure:
            logger.warning("Could not promote message %s to delivered", message.id)
            return message
        if delivered is None:
            return message

        await self.broadcaster.fan_out(
            [sender_connection, self.presence.connection_for(message.recipient_id)],
            "messageDelivered",
            {"messageId": delivered.id, "status": delivered.status.value},
        )
        return delivered

    # --- read receipts -------------------------------------------------------------

    async def mark_read(self, message_id: int, acking_user_id: str) -> Message | None:
        """Mark a message read on behalf of its recipient.

        Unknown messages and acknowledgements from anyone but the recipient
        are ignored without an error, so message existence is not revealed.

        Returns:
            The updated message, or None when nothing changed.
        """
        message = await self.store.find_message_by_id(message_id)
        if message is None or message.recipient_id != acking_user_id:
            logger.debug("Ignoring read receipt for message %s from %s", message_id, acking_user_id)
            return None
        return await self._promote_read(message)

    async def acknowledge(
        self, message_id: int, acking_user_id: str, status: MessageStatus
    ) -> Message:
        """Move a message forward to ``delivered`` or ``read`` on its recipient's request.

        Unlike :meth:`mark_read`, failures are reported, which suits the
        HTTP acknowledgement. A status the message already reached or passed
        leaves it unchanged.

        Returns:
            The message in its current state.

        Raises:
            InvalidRequest: ``status`` is not ``delivered`` or ``read``.
            MessageNotFound: No such message.
            NotAuthorized: ``acking_user_id`` is not the recipient.
        """
        if status not in (MessageStatus.DELIVERED, MessageStatus.READ):
            raise InvalidRequest("Invalid status", details={"status": status})
        message = await self.store.find_message_by_id(message_id)
        if message is None:
            raise MessageNotFound(details={"messageId": message_id})
        if message.recipient_id != acking_user_id:
            raise NotAuthorized(
                "Not authorized to update this message", details={"messageId": message_id}
            )

        if status is MessageStatus.READ:
            updated = await self._promote_read(message)
        else:
            updated = await self.store.update_message_status(
                message.id, MessageStatus.DELIVERED, utcnow()
            )
            if updated is not None:
                await self.broadcaster.fan_out(
                    [
                        self.presence.connection_for(updated.sender_id),
                        self.presence.connection_for(updated.recipient_id),
                    ],
                    "messageDelivered",
                    {"messageId": updated.id, "status": updated.status.value},
                )
        if updated is not None:
            return updated
        current = await self.store.find_message_by_id(message_id)
        return current if current is not None else message

    async def _promote_read(self, message: Message) -> Message | None:
        updated = await self.store.update_message_status(message.id, MessageStatus.READ, utcnow())
        if updated is None:
            return None

        await self.broadcaster.send_to_user(
            updated.sender_id,
            "messageRead",
            {
                "messageId": updated.id,
                "status": updated.status.value,
                "readAt": isoformat(updated.read_at),
            },
        )
        logger.info("Message %s marked as read by %s", updated.id, updated.recipient_id)
        return updated

    # --- ephemeral signals -------------------------------------------------------

    async def typing(self, from_id: str, username: str, to_id: str, is_typing: bool) -> bool:
        """Relay a typing indicator; returns True if the recipient was reached."""
        self.presence.set_typing(from_id, is_typing)
        return await self.broadcaster.send_to_user(
            to_id,
            "userTyping",
            {"userId": from_id, "username": username, "isTyping": is_typing},
        )

    async def update_status(self, user_id: str, status: str) -> str:
        """Persist a status line and announce it to everyone else."""
        text = status.strip() if isinstance(status, str) else ""
        if len(text) > self.status_max_length:
            raise InvalidRequest(
                f"Status cannot exceed {self.status_max_length} characters",
                details={"length": len(text), "maxLength": self.status_max_length},
            )
        await self.store.update_user_status(user_id, text)
        await self.broadcaster.broadcast(
            "userStatusUpdate",
            {"userId": user_id, "status": text},
            exclude_user=user_id,
        )
        return text

    # --- history -----------------------------------------------------------------

    async def history(
        self,
        user_id: str,
        other_id: str,
        *,
        page: int = 1,
        limit: int | None = None,
        newest_first: bool = True,
    ) -> list[Message]:
        """Return one page of the conversation between ``user_id`` and ``other_id``.

        Reading history never changes message status.
        """
        other = await self.store.find_user_by_id(other_id)
        if other is None:
            raise RecipientNotFound("User not found", details={"userId": other_id})
        size = min(max(limit or settings.history_page_size, 1), settings.history_max_page_size)
        return await self.store.find_messages_between(
            user_id, other_id, page=max(page, 1), limit=size, newest_first=newest_first
        )
