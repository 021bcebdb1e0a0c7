"""In-memory presence registry.

Tracks which users hold a live connection right now. Only one routing entry
is kept per user: a newer connection replaces the older one, and each
registration carries a generation token so that a late disconnect from a
superseded connection cannot evict its replacement.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from threading import Lock
from typing import Any

from chatline.services.connection import Connection
from chatline.utils.locks import KeyedLock


@dataclass(frozen=True)
class PresenceEntry:
    """Current routing entry of one user."""

    connection: Connection
    generation: int


class PresenceRegistry:
    """Maps user ids to their active connection."""

    def __init__(self) -> None:
        self._entries: dict[str, PresenceEntry] = {}
        self._locks = KeyedLock()
        self._generations = itertools.count(1)
        self._generation_guard = Lock()

    def _next_generation(self) -> int:
        with self._generation_guard:
            return next(self._generations)

    def register(self, user_id: str, connection: Connection) -> int:
        """Insert or overwrite the entry for ``user_id``.

        Returns:
            Generation token to present back to :meth:`unregister`.
        """
        with self._locks.hold(user_id):
            current = self._entries.get(user_id)
            if current is not None and current.connection is connection:
                return current.generation
            entry = PresenceEntry(connection=connection, generation=self._next_generation())
            self._entries[user_id] = entry
            return entry.generation

    def unregister(self, user_id: str, generation: int | None = None) -> bool:
        """Remove the entry for ``user_id``.

        When ``generation`` is given the entry is only removed if it is still
        the current registration.

        Returns:
            True if an entry was removed.
        """
        with self._locks.hold(user_id):
            current = self._entries.get(user_id)
            if current is None:
                return False
            if generation is not None and current.generation != generation:
                return False
            del self._entries[user_id]
            return True

    def is_current(self, user_id: str, generation: int) -> bool:
        entry = self._entries.get(user_id)
        return entry is not None and entry.generation == generation

    def is_online(self, user_id: str) -> bool:
        return user_id in self._entries

    def connection_for(self, user_id: str) -> Connection | None:
        entry = self._entries.get(user_id)
        return entry.connection if entry is not None else None

    def connections(self) -> list[Connection]:
        return [entry.connection for entry in list(self._entries.values())]

    def set_typing(self, user_id: str, is_typing: bool) -> bool:
        """Update the transient typing flag; returns False if the user is offline."""
        with self._locks.hold(user_id):
            entry = self._entries.get(user_id)
            if entry is None:
                return False
            entry.connection.is_typing = is_typing
            return True

    def snapshot(self) -> list[dict[str, Any]]:
        """Return the full online set in the ``onlineUsers`` payload shape."""
        return [
            {
                "userId": user_id,
                "username": entry.connection.username,
                "displayName": entry.connection.display_name,
                "profilePicture": entry.connection.profile_picture,
                "isOnline": True,
                "isTyping": entry.connection.is_typing,
            }
            for user_id, entry in list(self._entries.items())
        ]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._entries
