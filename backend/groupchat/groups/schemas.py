"""Pydantic schemas for the group registry."""
import time
import uuid
from typing import List, Optional, Set

from pydantic import BaseModel, Field


class GroupOptions(BaseModel):
    """Per-group settings."""
    allowMedia: bool = Field(default=True, description="Whether image/video messages are allowed")
    maxMembers: int = Field(default=100, ge=1, description="Member capacity")


class Group(BaseModel):
    """A chat group with its own membership and admin set.

    Invariant: ``adminIds`` is always a subset of ``memberIds``.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Group ID")
    name: str = Field(..., description="Unique (case-insensitive) group name")
    description: str = Field(default="", description="Free-form description")
    memberIds: Set[str] = Field(default_factory=set)
    adminIds: Set[str] = Field(default_factory=set)
    isDefault: bool = Field(default=False, description="New users join default groups")
    settings: GroupOptions = Field(default_factory=GroupOptions)
    createdAt: float = Field(default_factory=time.time)


class GroupSummary(BaseModel):
    """Group as listed to a particular user."""
    id: str
    name: str
    description: str
    memberCount: int
    isAdmin: bool
    isDefault: bool
    settings: GroupOptions
    createdAt: float


class GroupDetail(GroupSummary):
    memberIds: List[str]
    adminIds: List[str]


class GroupCreate(BaseModel):
    """Request body for POST /groups."""
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=1000)


class GroupUpdate(BaseModel):
    """Request body for PATCH /groups/{group_id} (all fields optional)."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    allowMedia: Optional[bool] = None
    maxMembers: Optional[int] = Field(default=None, ge=1)


class MemberRequest(BaseModel):
    """Request body for adding a member or promoting to admin."""
    userId: str = Field(..., min_length=1)
