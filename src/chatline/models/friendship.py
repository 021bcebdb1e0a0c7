"""Friendship edges gating who may message whom."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from chatline.db.session import Base
from chatline.db.time import utcnow


class FriendshipStatus(str, enum.Enum):
    """Lifecycle of a friend request; ``NONE`` is never stored."""

    NONE = "none"
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    BLOCKED = "blocked"


# When both directions of a pair carry a row, the first match here wins.
FRIENDSHIP_PRECEDENCE: tuple[FriendshipStatus, ...] = (
    FriendshipStatus.BLOCKED,
    FriendshipStatus.ACCEPTED,
    FriendshipStatus.PENDING,
    FriendshipStatus.DECLINED,
)


class Friendship(Base):
    """A friend request from ``requester_id`` to ``addressee_id``."""

    __tablename__ = "friendships"
    __table_args__ = (UniqueConstraint("requester_id", "addressee_id", name="uq_friendship_pair"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    requester_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    addressee_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[FriendshipStatus] = mapped_column(
        Enum(
            FriendshipStatus,
            name="friendship_status",
            values_callable=lambda members: [member.value for member in members],
            validate_strings=True,
        ),
        nullable=False,
        default=FriendshipStatus.PENDING,
    )
    message: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)
