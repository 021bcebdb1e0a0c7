"""WebSocket endpoint carrying the live messaging protocol."""

from __future__ import annotations

import logging

import anyio
from fastapi import APIRouter, WebSocket, status

from chatline.api.v1.dependencies import ChatGatewayDep
from chatline.services.auth import extract_bearer
from chatline.services.errors import AuthenticationError, PersistenceFailure

router = APIRouter(tags=["realtime"])

logger = logging.getLogger(__name__)


def _handshake_token(websocket: WebSocket) -> str | None:
    """Return the credential from the ``token`` query parameter or the Authorization header."""
    token = websocket.query_params.get("token")
    if token:
        return token
    return extract_bearer(websocket.headers.get("authorization"))


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket, gateway: ChatGatewayDep) -> None:
    """Authenticate, register presence, then process client events in order."""
    try:
        user = await gateway.authenticate(_handshake_token(websocket))
    except (AuthenticationError, PersistenceFailure) as err:
        logger.info("Refusing connection: %s", err.code)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=err.code)
        return

    await websocket.accept()
    connection = gateway.open(websocket, user)
    generation = await gateway.connect(connection)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            # Text and binary frames both carry JSON; the gateway validates either.
            frame = message.get("text")
            if frame is None:
                frame = message.get("bytes") or b""
            await gateway.dispatch(connection, frame)
    finally:
        # Cleanup must finish even when the receive loop is cancelled.
        with anyio.CancelScope(shield=True):
            await gateway.disconnect(connection, generation)
