"""User and presence endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from chatline.api.v1.dependencies import ChatGatewayDep, CurrentUserDep
from chatline.schemas.user import serialize_user

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me")
async def read_me(current_user: CurrentUserDep) -> dict[str, Any]:
    """Return the authenticated user's profile."""
    return serialize_user(current_user)


@router.get("/online")
async def online_users(current_user: CurrentUserDep, gateway: ChatGatewayDep) -> list[dict[str, Any]]:
    """Return everyone currently holding a live connection."""
    return gateway.presence.snapshot()
