"""Direct messages and their delivery lifecycle."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from chatline.db.session import Base
from chatline.db.time import utcnow


class MessageType(str, enum.Enum):
    """Kinds of content a message may carry."""

    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    AUDIO = "audio"
    VIDEO = "video"


class MessageStatus(str, enum.Enum):
    """Delivery state; only ever moves forward."""

    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def lower_statuses(self) -> list[MessageStatus]:
        """Return the statuses a message may be promoted to this one from."""
        return list(_STATUS_ORDER[: self.rank])


_STATUS_ORDER: tuple[MessageStatus, ...] = (
    MessageStatus.SENT,
    MessageStatus.DELIVERED,
    MessageStatus.READ,
)


def _enum_values(members: type[enum.Enum]) -> list[str]:
    return [member.value for member in members]


class Message(Base):
    """A text message from one user to another.

    The persisted row is the authoritative record; live events only notify.
    """

    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_pair_created", "sender_id", "recipient_id", "created_at"),
        Index("ix_messages_recipient_status", "recipient_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sender_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False)

    content: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[MessageType] = mapped_column(
        Enum(MessageType, name="message_type", values_callable=_enum_values, validate_strings=True),
        nullable=False,
        default=MessageType.TEXT,
    )
    status: Mapped[MessageStatus] = mapped_column(
        Enum(MessageStatus, name="message_status", values_callable=_enum_values, validate_strings=True),
        nullable=False,
        default=MessageStatus.SENT,
    )

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False, index=True)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(nullable=True)

    reply_to_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("messages.id"), nullable=True
    )

    def involves(self, user_a: str, user_b: str) -> bool:
        """Return True if the message belongs to the conversation of ``user_a`` and ``user_b``."""
        return {self.sender_id, self.recipient_id} == {user_a, user_b}
