"""User-related serializers."""

from typing import Any

from chatline.db.time import isoformat
from chatline.models import User


def serialize_user(user: User) -> dict[str, Any]:
    """Serialize a User row for the HTTP API."""
    return {
        "id": user.id,
        "username": user.username,
        "displayName": user.name,
        "profilePicture": user.profile_picture,
        "status": user.status,
        "isOnline": user.is_online,
        "lastSeen": isoformat(user.last_seen),
    }
