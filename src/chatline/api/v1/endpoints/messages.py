# src/chatline/api/v1/endpoints/messages.py
"""Conversation history and message endpoints for the Chatline API."""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Query, status

from chatline.api.v1.dependencies import ChatGatewayDep, ChatStoreDep, CurrentUserDep
from chatline.core.settings import settings
from chatline.db.time import isoformat
from chatline.models import MessageStatus
from chatline.schemas.events import SendMessagePayload
from chatline.schemas.message import (
    ConversationSummary,
    MessageHistoryResponse,
    MessageStatusUpdate,
    UnreadCountResponse,
    serialize_message,
)
from chatline.services.errors import (
    ChatError,
    MessageNotFound,
    NotAuthorized,
    PersistenceFailure,
    RecipientNotFound,
)

router = APIRouter(prefix="/messages", tags=["messages"])


def _http_error(err: ChatError) -> HTTPException:
    """Map a messaging failure onto the matching HTTP status."""
    if isinstance(err, (RecipientNotFound, MessageNotFound)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(err, NotAuthorized):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(err, PersistenceFailure):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=err.message)


@router.post("", status_code=status.HTTP_201_CREATED)
async def send_message(
    payload: SendMessagePayload,
    current_user: CurrentUserDep,
    gateway: ChatGatewayDep,
) -> dict[str, Any]:
    """Send a message to a friend; live connections are notified as over the socket."""
    try:
        message = await gateway.pipeline.send(
            current_user.id,
            payload.recipient_id,
            payload.content,
            payload.message_type,
            reply_to_id=payload.reply_to,
        )
    except ChatError as err:
        raise _http_error(err) from err
    return serialize_message(message)


@router.put("/{message_id}/status")
async def update_message_status(
    message_id: int,
    body: MessageStatusUpdate,
    current_user: CurrentUserDep,
    gateway: ChatGatewayDep,
) -> dict[str, Any]:
    """Acknowledge delivery or reading of a received message."""
    try:
        message = await gateway.pipeline.acknowledge(
            message_id, current_user.id, MessageStatus(body.status)
        )
    except ChatError as err:
        raise _http_error(err) from err
    return serialize_message(message)


@router.get("/conversations", response_model=list[ConversationSummary])
async def list_conversations(
    current_user: CurrentUserDep,
    store: ChatStoreDep,
) -> list[ConversationSummary]:
    """List conversation partners with the latest message and unread count."""
    try:
        rows = await store.list_conversations(current_user.id)
    except ChatError as err:
        raise _http_error(err) from err
    return [
        ConversationSummary(
            user_id=partner.id,
            username=partner.username,
            display_name=partner.name,
            profile_picture=partner.profile_picture,
            is_online=partner.is_online,
            last_seen=isoformat(partner.last_seen),
            last_message=serialize_message(message),
            unread_count=unread,
        )
        for partner, message, unread in rows
    ]


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(current_user: CurrentUserDep, store: ChatStoreDep) -> UnreadCountResponse:
    """Return how many received messages are not yet read."""
    try:
        count = await store.count_unread(current_user.id)
    except ChatError as err:
        raise _http_error(err) from err
    return UnreadCountResponse(unread_count=count)


@router.get("/{user_id}", response_model=MessageHistoryResponse)
async def get_history(
    user_id: str,
    current_user: CurrentUserDep,
    gateway: ChatGatewayDep,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.history_page_size, ge=1, le=settings.history_max_page_size),
    order: Literal["asc", "desc"] = Query("desc"),
) -> MessageHistoryResponse:
    """Get messages between the current user and ``user_id``."""
    try:
        messages = await gateway.pipeline.history(
            current_user.id,
            user_id,
            page=page,
            limit=limit,
            newest_first=order == "desc",
        )
    except ChatError as err:
        raise _http_error(err) from err

    return MessageHistoryResponse(
        messages=[serialize_message(message) for message in messages],
        page=page,
        limit=limit,
        order=order,
    )
