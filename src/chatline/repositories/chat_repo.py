"""Durable store for users, friendships and messages.

Every public method is a coroutine: the synchronous SQLAlchemy work runs in
the Starlette thread pool so a slow query never stalls the event loop, and
each call uses its own short-lived session.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from chatline.db.time import utcnow
from chatline.models import (
    FRIENDSHIP_PRECEDENCE,
    Friendship,
    FriendshipStatus,
    Message,
    MessageStatus,
    MessageType,
    User,
)
from chatline.services.errors import PersistenceFailure

__all__ = ["ChatStore", "ConversationRow"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

ConversationRow = tuple[User, Message, int]


class ChatStore:
    """Thin wrapper around database access for the messaging core."""

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        """Initialize the store.

        Args:
            session_factory: Session factory to use. Defaults to the application's SessionLocal.
        """
        if session_factory is None:
            from chatline.db.session import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory

    async def _run(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await run_in_threadpool(operation, *args, **kwargs)
        except SQLAlchemyError as exc:
            logger.error(
                "Store operation %s failed: %s",
                getattr(operation, "__name__", operation),
                exc,
                exc_info=True,
            )
            raise PersistenceFailure() from exc

    # --- users -----------------------------------------------------------------

    async def find_user_by_id(self, user_id: str) -> User | None:
        """Return a user by identifier."""
        return await self._run(self._find_user_by_id, user_id)

    def _find_user_by_id(self, user_id: str) -> User | None:
        with self._session_factory() as session:
            return session.get(User, user_id)

    async def create_user(
        self,
        username: str,
        *,
        display_name: str | None = None,
        user_id: str | None = None,
    ) -> User:
        """Insert a user row. Account flows live elsewhere; this serves seeding and tests."""
        return await self._run(self._create_user, username, display_name, user_id)

    def _create_user(self, username: str, display_name: str | None, user_id: str | None) -> User:
        with self._session_factory() as session:
            user = User(username=username, display_name=display_name)
            if user_id is not None:
                user.id = user_id
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    async def update_user_presence(
        self, user_id: str, *, is_online: bool, last_seen: datetime
    ) -> None:
        """Persist the online flag and last-seen timestamp of a user."""
        await self._run(self._update_user_presence, user_id, is_online, last_seen)

    def _update_user_presence(self, user_id: str, is_online: bool, last_seen: datetime) -> None:
        with self._session_factory() as session:
            session.execute(
                update(User)
                .where(User.id == user_id)
                .values(is_online=is_online, last_seen=last_seen)
            )
            session.commit()

    async def update_user_status(self, user_id: str, status: str) -> None:
        """Persist a user's free-text status line."""
        await self._run(self._update_user_status, user_id, status)

    def _update_user_status(self, user_id: str, status: str) -> None:
        with self._session_factory() as session:
            session.execute(update(User).where(User.id == user_id).values(status=status))
            session.commit()

    # --- friendships -----------------------------------------------------------

    async def friendship_status(self, user_a: str, user_b: str) -> FriendshipStatus:
        """Return the direction-independent friendship status of a pair."""
        return await self._run(self._friendship_status, user_a, user_b)

    def _friendship_status(self, user_a: str, user_b: str) -> FriendshipStatus:
        with self._session_factory() as session:
            statuses = set(
                session.scalars(
                    select(Friendship.status).where(
                        or_(
                            and_(Friendship.requester_id == user_a, Friendship.addressee_id == user_b),
                            and_(Friendship.requester_id == user_b, Friendship.addressee_id == user_a),
                        )
                    )
                )
            )
        for status in FRIENDSHIP_PRECEDENCE:
            if status in statuses:
                return status
        return FriendshipStatus.NONE

    async def set_friendship(
        self, requester_id: str, addressee_id: str, status: FriendshipStatus
    ) -> Friendship:
        """Create or update the friendship row for an ordered pair."""
        return await self._run(self._set_friendship, requester_id, addressee_id, status)

    def _set_friendship(
        self, requester_id: str, addressee_id: str, status: FriendshipStatus
    ) -> Friendship:
        if status is FriendshipStatus.NONE:
            raise ValueError("FriendshipStatus.NONE cannot be stored")
        with self._session_factory() as session:
            edge = session.scalars(
                select(Friendship).where(
                    Friendship.requester_id == requester_id,
                    Friendship.addressee_id == addressee_id,
                )
            ).first()
            if edge is None:
                edge = Friendship(requester_id=requester_id, addressee_id=addressee_id)
                session.add(edge)
            edge.status = status
            session.commit()
            session.refresh(edge)
            return edge

    # --- messages --------------------------------------------------------------

    async def insert_message(
        self,
        *,
        sender_id: str,
        recipient_id: str,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        reply_to_id: int | None = None,
    ) -> Message:
        """Insert a new message in the ``sent`` state and return the persisted row."""
        return await self._run(
            self._insert_message, sender_id, recipient_id, content, message_type, reply_to_id
        )

    def _insert_message(
        self,
        sender_id: str,
        recipient_id: str,
        content: str,
        message_type: MessageType,
        reply_to_id: int | None,
    ) -> Message:
        with self._session_factory() as session:
            message = Message(
                sender_id=sender_id,
                recipient_id=recipient_id,
                content=content,
                message_type=message_type,
                status=MessageStatus.SENT,
                created_at=utcnow(),
                reply_to_id=reply_to_id,
            )
            session.add(message)
            session.commit()
            session.refresh(message)
            return message

    async def find_message_by_id(self, message_id: int) -> Message | None:
        """Return a message by identifier."""
        return await self._run(self._find_message_by_id, message_id)

    def _find_message_by_id(self, message_id: int) -> Message | None:
        with self._session_factory() as session:
            return session.get(Message, message_id)

    async def update_message_status(
        self, message_id: int, status: MessageStatus, timestamp: datetime
    ) -> Message | None:
        """Promote a message to ``status``.

        The update only applies when the stored status ranks below the target,
        so a status can never move backwards. Returns the updated row, or None
        when nothing changed.
        """
        return await self._run(self._update_message_status, message_id, status, timestamp)

    def _update_message_status(
        self, message_id: int, status: MessageStatus, timestamp: datetime
    ) -> Message | None:
        lower = status.lower_statuses()
        if not lower:
            return None

        values: dict[str, Any] = {"status": status}
        if status is MessageStatus.DELIVERED:
            values["delivered_at"] = timestamp
        elif status is MessageStatus.READ:
            values["read_at"] = timestamp

        with self._session_factory() as session:
            result = session.execute(
                update(Message)
                .where(Message.id == message_id, Message.status.in_(lower))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            session.commit()
            if result.rowcount == 0:
                return None
            return session.get(Message, message_id)

    async def find_messages_between(
        self,
        user_a: str,
        user_b: str,
        *,
        page: int = 1,
        limit: int = 50,
        newest_first: bool = True,
    ) -> list[Message]:
        """Return one page of the conversation log between two users."""
        return await self._run(self._find_messages_between, user_a, user_b, page, limit, newest_first)

    def _find_messages_between(
        self, user_a: str, user_b: str, page: int, limit: int, newest_first: bool
    ) -> list[Message]:
        ordering = (
            (Message.created_at.desc(), Message.id.desc())
            if newest_first
            else (Message.created_at.asc(), Message.id.asc())
        )
        stmt = (
            select(Message)
            .where(_conversation_clause(user_a, user_b))
            .order_by(*ordering)
            .offset((max(page, 1) - 1) * limit)
            .limit(limit)
        )
        with self._session_factory() as session:
            return list(session.scalars(stmt))

    async def list_conversations(self, user_id: str) -> list[ConversationRow]:
        """Return ``(partner, last_message, unread_count)`` rows, most recent first."""
        return await self._run(self._list_conversations, user_id)

    def _list_conversations(self, user_id: str) -> list[ConversationRow]:
        stmt = (
            select(Message)
            .where(or_(Message.sender_id == user_id, Message.recipient_id == user_id))
            .order_by(Message.created_at.desc(), Message.id.desc())
        )
        latest: dict[str, Message] = {}
        unread: dict[str, int] = {}
        with self._session_factory() as session:
            for message in session.scalars(stmt):
                partner_id = (
                    message.recipient_id if message.sender_id == user_id else message.sender_id
                )
                latest.setdefault(partner_id, message)
                if message.recipient_id == user_id and message.status is not MessageStatus.READ:
                    unread[partner_id] = unread.get(partner_id, 0) + 1
            partners = {
                user.id: user
                for user in session.scalars(select(User).where(User.id.in_(list(latest))))
            }
        return [
            (partners[partner_id], message, unread.get(partner_id, 0))
            for partner_id, message in latest.items()
            if partner_id in partners
        ]

    async def count_unread(self, user_id: str) -> int:
        """Return how many messages addressed to ``user_id`` are not yet read."""
        return await self._run(self._count_unread, user_id)

    def _count_unread(self, user_id: str) -> int:
        with self._session_factory() as session:
            count = session.scalar(
                select(func.count(Message.id)).where(
                    Message.recipient_id == user_id,
                    Message.status != MessageStatus.READ,
                )
            )
        return int(count or 0)


def _conversation_clause(user_a: str, user_b: str) -> Any:
    return or_(
        and_(Message.sender_id == user_a, Message.recipient_id == user_b),
        and_(Message.sender_id == user_b, Message.recipient_id == user_a),
    )
