"""Bearer-token authentication for connections and HTTP requests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from jose import ExpiredSignatureError, JWTError, jwt

from chatline.core.settings import settings
from chatline.models import User
from chatline.services.errors import (
    CredentialExpired,
    IdentityNotFound,
    InvalidCredential,
    Unauthenticated,
)

if TYPE_CHECKING:
    from chatline.repositories.chat_repo import ChatStore


def create_access_token(user_id: str, extra_claims: dict[str, str] | None = None) -> str:
    """Create a JWT access token whose subject is ``user_id``."""
    to_encode: dict[str, object] = {"sub": user_id}
    if extra_claims:
        to_encode.update(extra_claims)
    expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode["exp"] = expire
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def extract_bearer(value: str | None) -> str | None:
    """Return the token part of an ``Authorization: Bearer <token>`` header value."""
    if not value:
        return None
    scheme, _, token = value.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


class ConnectionAuthenticator:
    """Resolve a bearer credential to a stored user."""

    def __init__(
        self,
        store: ChatStore,
        *,
        secret_key: str | None = None,
        algorithm: str | None = None,
    ) -> None:
        self.store = store
        self._secret_key = secret_key or settings.secret_key
        self._algorithm = algorithm or settings.jwt_algorithm

    def decode_subject(self, token: str | None) -> str:
        """Verify ``token`` and return its subject claim.

        Raises:
            Unauthenticated: If no token was presented.
            CredentialExpired: If the token has expired.
            InvalidCredential: If the token is malformed, badly signed or has no subject.
        """
        if token is None or not token.strip():
            raise Unauthenticated()
        try:
            payload = jwt.decode(token.strip(), self._secret_key, algorithms=[self._algorithm])
        except ExpiredSignatureError as err:
            raise CredentialExpired() from err
        except JWTError as err:
            raise InvalidCredential() from err

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise InvalidCredential()
        return subject

    async def authenticate(self, token: str | None) -> User:
        """Return the user bound to ``token``.

        Raises:
            IdentityNotFound: If the token is valid but its user no longer exists.
        """
        user_id = self.decode_subject(token)
        user = await self.store.find_user_by_id(user_id)
        if user is None:
            raise IdentityNotFound()
        return user
