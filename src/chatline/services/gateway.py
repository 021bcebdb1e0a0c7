"""Connection lifecycle and inbound event dispatch.

The gateway owns the presence registry, the room manager and the delivery
pipeline for one application instance. Each connection's events are handled
in arrival order by its own receive loop; failures are converted into a
``messageError`` sent back to that connection only.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from chatline.core.settings import settings
from chatline.db.time import isoformat, utcnow
from chatline.models import User
from chatline.schemas.events import (
    ClientEvent,
    ConversationTarget,
    MarkAsReadPayload,
    SendMessagePayload,
    TypingPayload,
    UpdateStatusPayload,
)
from chatline.services.auth import ConnectionAuthenticator
from chatline.services.broadcaster import EventBroadcaster
from chatline.services.connection import Connection, JSONSocket
from chatline.services.delivery import MessageDeliveryPipeline
from chatline.services.errors import (
    ChatError,
    InvalidRequest,
    PersistenceFailure,
    Unauthenticated,
)
from chatline.services.presence import PresenceRegistry
from chatline.services.rooms import RoomManager
from chatline.utils.locks import AsyncKeyedLock

if TYPE_CHECKING:
    from chatline.repositories.chat_repo import ChatStore

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, dict[str, Any]], Awaitable[None]]

GENERIC_FAILURE = "Something went wrong while processing your request"


def _parse(model: type[BaseModel], data: dict[str, Any]) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as err:
        raise InvalidRequest(
            "Invalid payload",
            details=err.errors(include_url=False, include_context=False, include_input=False),
        ) from err


class ChatGateway:
    """Entry point for everything a live connection does."""

    def __init__(
        self,
        store: ChatStore,
        *,
        presence: PresenceRegistry | None = None,
        rooms: RoomManager | None = None,
        handshake_timeout: float | None = None,
    ) -> None:
        self.store = store
        self.presence = presence or PresenceRegistry()
        self.rooms = rooms or RoomManager()
        self.broadcaster = EventBroadcaster(self.presence, self.rooms)
        self.authenticator = ConnectionAuthenticator(store)
        self.pipeline = MessageDeliveryPipeline(store, self.presence, self.rooms, self.broadcaster)
        self.handshake_timeout = handshake_timeout or settings.handshake_timeout_seconds
        self._lifecycle = AsyncKeyedLock()
        self._handlers: dict[str, Handler] = {
            "joinConversation": self._on_join,
            "leaveConversation": self._on_leave,
            "sendMessage": self._on_send,
            "markAsRead": self._on_mark_read,
            "typing": self._on_typing,
            "updateStatus": self._on_update_status,
        }

    # --- lifecycle ---------------------------------------------------------------

    async def authenticate(self, token: str | None) -> User:
        """Authenticate a handshake within the configured window."""
        try:
            return await asyncio.wait_for(
                self.authenticator.authenticate(token), timeout=self.handshake_timeout
            )
        except TimeoutError as err:
            raise Unauthenticated("Authentication timed out") from err

    def open(self, socket: JSONSocket, user: User) -> Connection:
        """Bind an accepted socket to an authenticated user."""
        return Connection(
            socket,
            user.id,
            user.username,
            display_name=user.name,
            profile_picture=user.profile_picture,
        )

    async def connect(self, connection: Connection) -> int:
        """Register a connection, mark the user online and announce it.

        Returns:
            Generation token for the matching :meth:`disconnect`.
        """
        async with self._lifecycle.hold(connection.user_id):
            generation = self.presence.register(connection.user_id, connection)
            logger.info("User connected: %s (%s)", connection.username, connection.user_id)
            try:
                await self.store.update_user_presence(
                    connection.user_id, is_online=True, last_seen=utcnow()
                )
            except PersistenceFailure:
                logger.warning("Could not persist online state for %s", connection.user_id)
            await self.broadcaster.broadcast(
                "userOnline",
                {"userId": connection.user_id, "username": connection.username, "isOnline": True},
                exclude_user=connection.user_id,
            )
            await connection.send("onlineUsers", self.presence.snapshot())
        return generation

    async def disconnect(self, connection: Connection, generation: int) -> bool:
        """Tear down a connection.

        Presence is only cleared when ``generation`` is still the user's
        current registration, so a late disconnect of a replaced connection
        leaves the newer one online.

        Returns:
            True if the user went offline.
        """
        connection.closed = True
        self.rooms.discard(connection)
        async with self._lifecycle.hold(connection.user_id):
            if not self.presence.unregister(connection.user_id, generation):
                logger.info(
                    "Ignoring stale disconnect of %s (%s)",
                    connection.username,
                    connection.connection_id,
                )
                return False
            logger.info("User disconnected: %s (%s)", connection.username, connection.user_id)
            last_seen = utcnow()
            try:
                await self.store.update_user_presence(
                    connection.user_id, is_online=False, last_seen=last_seen
                )
            except PersistenceFailure:
                logger.warning("Could not persist offline state for %s", connection.user_id)
            await self.broadcaster.broadcast(
                "userOffline",
                {
                    "userId": connection.user_id,
                    "username": connection.username,
                    "isOnline": False,
                    "lastSeen": isoformat(last_seen),
                },
                exclude_user=connection.user_id,
            )
        return True

    # --- dispatch ----------------------------------------------------------------

    async def dispatch(
        self, connection: Connection, frame: str | bytes | dict[str, Any]
    ) -> None:
        """Handle one inbound frame; never raises for per-event failures."""
        try:
            if isinstance(frame, bytes):
                try:
                    frame = frame.decode("utf-8")
                except UnicodeDecodeError as err:
                    raise InvalidRequest("Frames must be UTF-8 encoded JSON") from err
            if isinstance(frame, str):
                try:
                    frame = json.loads(frame)
                except json.JSONDecodeError as err:
                    raise InvalidRequest("Frames must be JSON objects") from err
            if not isinstance(frame, dict):
                raise InvalidRequest("Frames must be JSON objects")
            envelope = _parse(ClientEvent, frame)
            handler = self._handlers.get(envelope.event)
            if handler is None:
                raise InvalidRequest(f"Unknown event: {envelope.event}")
            await handler(connection, envelope.data)
        except ChatError as err:
            if isinstance(err, PersistenceFailure):
                logger.error("Persistence failure for %s: %s", connection.user_id, err)
            await connection.send("messageError", err.to_payload())
        except Exception:
            logger.exception("Unhandled error processing frame from %s", connection.user_id)
            await connection.send("messageError", {"error": GENERIC_FAILURE})

    async def _on_join(self, connection: Connection, data: dict[str, Any]) -> None:
        target: ConversationTarget = _parse(ConversationTarget, data)
        key = self.rooms.join(connection, connection.user_id, target.recipient_id)
        await connection.send("roomJoined", {"roomId": key, "recipientId": target.recipient_id})

    async def _on_leave(self, connection: Connection, data: dict[str, Any]) -> None:
        target: ConversationTarget = _parse(ConversationTarget, data)
        key = self.rooms.leave(connection, connection.user_id, target.recipient_id)
        await connection.send("roomLeft", {"roomId": key, "recipientId": target.recipient_id})

    async def _on_send(self, connection: Connection, data: dict[str, Any]) -> None:
        payload: SendMessagePayload = _parse(SendMessagePayload, data)
        await self.pipeline.send(
            connection.user_id,
            payload.recipient_id,
            payload.content,
            payload.message_type,
            reply_to_id=payload.reply_to,
            origin=connection,
        )

    async def _on_mark_read(self, connection: Connection, data: dict[str, Any]) -> None:
        payload: MarkAsReadPayload = _parse(MarkAsReadPayload, data)
        await self.pipeline.mark_read(payload.message_id, connection.user_id)

    async def _on_typing(self, connection: Connection, data: dict[str, Any]) -> None:
        payload: TypingPayload = _parse(TypingPayload, data)
        await self.pipeline.typing(
            connection.user_id, connection.username, payload.recipient_id, payload.is_typing
        )

    async def _on_update_status(self, connection: Connection, data: dict[str, Any]) -> None:
        payload: UpdateStatusPayload = _parse(UpdateStatusPayload, data)
        await self.pipeline.update_status(connection.user_id, payload.status)
