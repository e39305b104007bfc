"""Data models for chat messages and pins.

Reaction and seen-by state is held as sets internally; the serializers emit
sorted lists so every client sees the same ordering.
"""
import time
import uuid
from enum import Enum
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field, field_serializer


class MessageKind(str, Enum):
    """Type of chat message.

    Attributes:
        TEXT: Plain text body.
        IMAGE: Body is a media reference to an uploaded image.
        VIDEO: Body is a media reference to an uploaded video.
    """
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"


class Message(BaseModel):
    """A message in a group's history.

    Attributes:
        id: Unique message identifier (random UUID hex).
        groupId: Group this message belongs to.
        authorId: Sender's user ID.
        createdAt: Unix timestamp (seconds since epoch).
        kind: text, image or video.
        body: Text content, or the media reference for image/video.
        replyToId: ID of the message this one replies to, if any.
        reactions: emoji -> set of user IDs who reacted with it.
        seenBy: User IDs who have seen the message (always includes the author).
        editedAt: Timestamp of the last edit, if edited.
        deleted: Only ever true on the copy returned by a delete.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Unique message ID")
    groupId: str = Field(..., description="Group ID this message belongs to")
    authorId: str = Field(..., description="User ID of the sender")
    createdAt: float = Field(default_factory=time.time, description="Timestamp in seconds since epoch")
    kind: MessageKind = Field(default=MessageKind.TEXT, description="Message kind")
    body: str = Field(..., description="Text content or media reference")
    replyToId: Optional[str] = Field(default=None, description="Message being replied to")
    reactions: Dict[str, Set[str]] = Field(default_factory=dict)
    seenBy: Set[str] = Field(default_factory=set)
    editedAt: Optional[float] = Field(default=None)
    deleted: bool = Field(default=False)

    @field_serializer("reactions")
    def serialize_reactions(self, reactions: Dict[str, Set[str]]) -> Dict[str, List[str]]:
        return {emoji: sorted(users) for emoji, users in reactions.items()}

    @field_serializer("seenBy")
    def serialize_seen_by(self, seen_by: Set[str]) -> List[str]:
        return sorted(seen_by)

    def reactions_snapshot(self) -> Dict[str, List[str]]:
        return {emoji: sorted(users) for emoji, users in self.reactions.items()}

    def seen_by_snapshot(self) -> List[str]:
        return sorted(self.seenBy)


class PinnedEntry(BaseModel):
    """A time-limited highlight of a message.

    ``message`` is a snapshot taken at pin time so the pin stays renderable
    after the message leaves the bounded history window.
    """
    messageId: str
    groupId: str
    pinnedBy: str
    pinnedAt: float
    expiresAt: float
    message: Message

    def is_active(self, now: float) -> bool:
        return now < self.expiresAt


class PinRequest(BaseModel):
    """Request body for POST /groups/{group_id}/messages/{message_id}/pin."""
    durationDays: Optional[float] = Field(default=None, gt=0)


class EditRequest(BaseModel):
    """Request body for PATCH /groups/{group_id}/messages/{message_id}."""
    content: str = Field(..., min_length=1)
