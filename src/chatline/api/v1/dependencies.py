"""Shared API dependencies for authentication and service access."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.requests import HTTPConnection
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from chatline.models import User
from chatline.repositories.chat_repo import ChatStore
from chatline.services.errors import AuthenticationError, PersistenceFailure
from chatline.services.gateway import ChatGateway

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()


def get_chat_gateway(connection: HTTPConnection) -> ChatGateway:
    """Return the gateway owned by the running application."""
    gateway: ChatGateway = connection.app.state.chat_gateway
    return gateway


ChatGatewayDep = Annotated[ChatGateway, Depends(get_chat_gateway)]


def get_chat_store(gateway: ChatGatewayDep) -> ChatStore:
    """Return the durable store used by the gateway."""
    return gateway.store


ChatStoreDep = Annotated[ChatStore, Depends(get_chat_store)]


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    gateway: ChatGatewayDep,
) -> User:
    """Get the current authenticated user from the bearer token.

    Args:
        credentials: HTTP Bearer token credentials
        gateway: Application chat gateway

    Returns:
        User object for the authenticated user

    Raises:
        HTTPException: If the token is invalid, expired or its user is gone
    """
    try:
        return await gateway.authenticator.authenticate(credentials.credentials)
    except AuthenticationError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=err.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from err
    except PersistenceFailure as err:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage unavailable",
        ) from err


# Type alias for current user dependency
CurrentUserDep = Annotated[User, Depends(get_current_user)]
