# src/chatline/services/__init__.py
"""Real-time messaging services for the Chatline application."""

from .auth import ConnectionAuthenticator, create_access_token
from .broadcaster import EventBroadcaster
from .connection import Connection
from .delivery import MessageDeliveryPipeline
from .gateway import ChatGateway
from .presence import PresenceRegistry
from .rooms import RoomManager, room_key

__all__ = [
    "ChatGateway",
    "Connection",
    "ConnectionAuthenticator",
    "EventBroadcaster",
    "MessageDeliveryPipeline",
    "PresenceRegistry",
    "RoomManager",
    "create_access_token",
    "room_key",
]
