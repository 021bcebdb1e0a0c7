"""Outbound event delivery.

Two modes: broadcast to every registered connection except the originating
user, and targeted delivery to one user resolved through the presence
registry at send time. Events for users who are not registered are dropped;
nothing is queued or retried.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from chatline.services.connection import Connection
from chatline.services.presence import PresenceRegistry
from chatline.services.rooms import RoomManager

logger = logging.getLogger(__name__)


class EventBroadcaster:
    """Deliver events to live connections."""

    def __init__(self, presence: PresenceRegistry, rooms: RoomManager) -> None:
        self.presence = presence
        self.rooms = rooms

    async def send_to_connection(self, connection: Connection, event: str, data: Any) -> bool:
        return await connection.send(event, data)

    async def send_to_user(self, user_id: str, event: str, data: Any) -> bool:
        """Send to the user's current connection; returns False if dropped."""
        connection = self.presence.connection_for(user_id)
        if connection is None:
            logger.debug("Dropping %s for offline user %s", event, user_id)
            return False
        return await connection.send(event, data)

    async def broadcast(self, event: str, data: Any, *, exclude_user: str | None = None) -> int:
        """Send to every registered connection except those of ``exclude_user``."""
        targets = [
            connection
            for connection in self.presence.connections()
            if connection.user_id != exclude_user
        ]
        return await self.fan_out(targets, event, data)

    async def send_to_room(self, key: str, event: str, data: Any) -> int:
        return await self.fan_out(self.rooms.members(key), event, data)

    async def fan_out(
        self, connections: Iterable[Connection | None], event: str, data: Any
    ) -> int:
        """Send one event to each distinct connection, in the given order.

        Returns:
            Number of connections that accepted the event.
        """
        seen: set[str] = set()
        targets: list[Connection] = []
        for connection in connections:
            if connection is None or connection.connection_id in seen:
                continue
            seen.add(connection.connection_id)
            targets.append(connection)
        if not targets:
            return 0
        results = await asyncio.gather(*(connection.send(event, data) for connection in targets))
        return sum(1 for delivered in results if delivered)
