"""SQLAlchemy models for the Chatline application."""

from .friendship import FRIENDSHIP_PRECEDENCE, Friendship, FriendshipStatus
from .message import Message, MessageStatus, MessageType
from .user import User

__all__ = [
    "FRIENDSHIP_PRECEDENCE", "Friendship", "FriendshipStatus",
    "Message", "MessageStatus", "MessageType",
    "User",
]
