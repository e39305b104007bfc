"""Identity module: user records, credentials and signed access tokens.

Services:
    - IdentityStore: user lookup, credential verification, user creation.
    - TokenService: issue and verify signed (JWT) access tokens.
"""
from .schemas import Role, User, UserCreate
from .service import IdentityStore
from .tokens import TokenClaims, TokenService

__all__ = [
    "Role",
    "User",
    "UserCreate",
    "IdentityStore",
    "TokenClaims",
    "TokenService",
]
