"""Pydantic schemas for the identity module."""
import time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Global user role.

    Attributes:
        MEMBER: Ordinary user.
        ADMIN: May create ordinary members.
        SUPER_ADMIN: Bypasses every group admin check and may grant roles.
    """
    MEMBER = "member"
    ADMIN = "admin"
    SUPER_ADMIN = "superAdmin"


class User(BaseModel):
    """A registered user.

    The password hash is kept on the record but never serialized.
    """
    id: str = Field(..., description="Normalized (lower-case) identifier")
    displayName: str = Field(..., description="Display name shown in UI")
    role: Role = Field(default=Role.MEMBER, description="Global role")
    createdAt: float = Field(default_factory=time.time, description="Creation timestamp")
    lastSeenAt: Optional[float] = Field(default=None, description="Last connect/disconnect")
    passwordHash: str = Field(default="", exclude=True, repr=False)

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN


class UserCreate(BaseModel):
    """Request body for creating a user."""
    username: str = Field(..., min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_.\-]+$")
    password: str = Field(..., min_length=1, max_length=256)
    displayName: Optional[str] = Field(default=None, max_length=100)
    role: Role = Field(default=Role.MEMBER)


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""
    username: str
    password: str


class LoginResponse(BaseModel):
    token: str
    user: User


class RoleUpdate(BaseModel):
    role: Role
