"""FastAPI dependencies resolving the calling user from a bearer token."""
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from groupchat.chat.hub import SessionHub, get_hub
from groupchat.errors import AuthRequired

from .schemas import User

_bearer = HTTPBearer(auto_error=False)


def hub_dependency() -> SessionHub:
    return get_hub()


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    hub: SessionHub = Depends(hub_dependency),
) -> User:
    """Resolve ``Authorization: Bearer <token>`` to a user.

    Raises:
        AuthRequired: No bearer token was sent.
        InvalidCredential: The token is expired, forged or malformed.
    """
    if credentials is None or not credentials.credentials:
        raise AuthRequired("Bearer token required")
    claims = hub.tokens.decode(credentials.credentials)
    user = hub.identity.find(claims.user_id)
    if user is None:
        raise AuthRequired("Unknown user")
    return user
