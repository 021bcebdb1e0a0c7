"""Conversation rooms: ephemeral per-pair routing groups.

Membership is routing metadata only. It never decides whether a user may
read or send messages in a conversation.
"""

from __future__ import annotations

import logging

from chatline.services.connection import Connection
from chatline.utils.locks import KeyedLock

logger = logging.getLogger(__name__)


def room_key(user_a: str, user_b: str) -> str:
    """Return the canonical room id for a pair, independent of argument order."""
    return "-".join(sorted((user_a, user_b)))


class RoomManager:
    """Attach and detach connections to per-pair rooms."""

    def __init__(self) -> None:
        self._rooms: dict[str, set[Connection]] = {}
        self._memberships: dict[str, set[str]] = {}
        self._room_locks = KeyedLock()
        self._connection_locks = KeyedLock()

    def join(self, connection: Connection, self_id: str, other_id: str) -> str:
        """Attach ``connection`` to the room of ``self_id`` and ``other_id``; idempotent."""
        key = room_key(self_id, other_id)
        with self._room_locks.hold(key):
            self._rooms.setdefault(key, set()).add(connection)
        with self._connection_locks.hold(connection.connection_id):
            self._memberships.setdefault(connection.connection_id, set()).add(key)
        logger.info("User %s joined conversation room %s", connection.username, key)
        return key

    def leave(self, connection: Connection, self_id: str, other_id: str) -> str:
        """Detach ``connection`` from the pair's room; no-op if it is not a member."""
        key = room_key(self_id, other_id)
        self._detach(connection, key)
        logger.info("User %s left conversation room %s", connection.username, key)
        return key

    def discard(self, connection: Connection) -> None:
        """Detach ``connection`` from every room it joined."""
        with self._connection_locks.hold(connection.connection_id):
            keys = self._memberships.pop(connection.connection_id, set())
        for key in keys:
            self._remove_member(key, connection)

    def _detach(self, connection: Connection, key: str) -> None:
        self._remove_member(key, connection)
        with self._connection_locks.hold(connection.connection_id):
            keys = self._memberships.get(connection.connection_id)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._memberships[connection.connection_id]

    def _remove_member(self, key: str, connection: Connection) -> None:
        with self._room_locks.hold(key):
            members = self._rooms.get(key)
            if members is None:
                return
            members.discard(connection)
            if not members:
                del self._rooms[key]

    def members(self, key: str) -> list[Connection]:
        with self._room_locks.hold(key):
            return list(self._rooms.get(key, ()))

    def rooms_for(self, connection: Connection) -> set[str]:
        with self._connection_locks.hold(connection.connection_id):
            return set(self._memberships.get(connection.connection_id, ()))

    def __contains__(self, key: object) -> bool:
        return key in self._rooms
