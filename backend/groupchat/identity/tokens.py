"""Signed access tokens (JWT, HS256 by default).

Tokens carry the user identifier in ``sub`` and the role granted at issue
time in ``role``. The chat core only ever sees the decoded claims; it never
inspects raw tokens.
"""
import logging
import time
from dataclasses import dataclass

import jwt

from groupchat.errors import InvalidCredential

from .schemas import Role, User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    role: Role
    issued_at: float
    expires_at: float


class TokenService:
    """Issues and verifies access tokens."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", expire_minutes: int = 720) -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._expire_seconds = expire_minutes * 60

    def issue(self, user: User) -> str:
        now = int(time.time())
        payload = {
            "sub": user.id,
            "role": user.role.value,
            "iat": now,
            "exp": now + self._expire_seconds,
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def decode(self, token: str) -> TokenClaims:
        """Verify signature and expiry.

        Raises:
            InvalidCredential: If the token is expired, forged or malformed.
        """
        if not token:
            raise InvalidCredential("Missing token")
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError:
            raise InvalidCredential("Token expired")
        except jwt.InvalidTokenError as e:
            logger.debug("[Identity] Rejected token: %s", e)
            raise InvalidCredential("Invalid token")

        try:
            role = Role(payload.get("role", Role.MEMBER.value))
        except ValueError:
            raise InvalidCredential("Invalid role claim")

        return TokenClaims(
            user_id=payload["sub"],
            role=role,
            issued_at=float(payload["iat"]),
            expires_at=float(payload["exp"]),
        )
