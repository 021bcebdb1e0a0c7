"""SQLAlchemy models for chat user accounts."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from chatline.db.session import Base
from chatline.db.time import utcnow

DEFAULT_STATUS = "Hey there! I am using Chatline."


def _new_user_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    """Account identity plus the presence fields mirrored from the live layer."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_user_id)
    username: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    profile_picture: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(150), nullable=False, default=DEFAULT_STATUS)

    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    last_seen: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    @property
    def name(self) -> str:
        """Return the name shown to other users."""
        return self.display_name or self.username
