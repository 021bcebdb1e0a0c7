"""Live client connections."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class JSONSocket(Protocol):
    """The subset of ``starlette.websockets.WebSocket`` a connection needs."""

    async def send_json(self, data: Any, mode: str = "text") -> None: ...


class Connection:
    """A live channel bound to exactly one authenticated user.

    Outbound frames are ``{"event": name, "data": payload}``. Sends on one
    socket are serialised so frames are never interleaved.
    """

    def __init__(
        self,
        socket: JSONSocket,
        user_id: str,
        username: str,
        *,
        display_name: str | None = None,
        profile_picture: str | None = None,
        connection_id: str | None = None,
    ) -> None:
        self.socket = socket
        self.user_id = user_id
        self.username = username
        self.display_name = display_name or username
        self.profile_picture = profile_picture
        self.connection_id = connection_id or uuid.uuid4().hex
        self.is_typing = False
        self.closed = False
        self._send_lock = asyncio.Lock()

    async def send(self, event: str, data: Any) -> bool:
        """Send one event; returns False if the socket is gone."""
        if self.closed:
            return False
        async with self._send_lock:
            try:
                await self.socket.send_json({"event": event, "data": data})
            except Exception as exc:  # noqa: BLE001 - any transport failure means the peer is gone
                logger.debug(
                    "Dropping %s for connection %s (%s): %s",
                    event,
                    self.connection_id,
                    self.username,
                    exc,
                )
                self.closed = True
                return False
        return True

    def __repr__(self) -> str:
        return f"Connection(user_id={self.user_id!r}, connection_id={self.connection_id!r})"
