"""Websocket event vocabulary.

Inbound frames are JSON objects with a ``type`` discriminator and are
validated into one of the event models below before reaching the hub.
Outbound frames are plain dicts built by the ``*_event`` helpers.

Inbound:
    authenticate, joinGroup, leaveGroup, newMessage, toggleReaction,
    markSeen, typing, deleteMessage, pinMessage, unpinMessage, editMessage

Outbound:
    authenticated, onlineUsers, groupHistory, messageReceived,
    reactionUpdate, seenUpdate, userTyping, messageDeleted, messageEdited,
    pinnedUpdate, addedToGroup, error
"""
from typing import Annotated, Any, Dict, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from groupchat.errors import Malformed

from .schemas import Message, MessageKind, PinnedEntry


# =============================================================================
# Inbound events
# =============================================================================


class _InboundEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")


class AuthenticateEvent(_InboundEvent):
    type: Literal["authenticate"]
    token: str = Field(..., min_length=1)


class JoinGroupEvent(_InboundEvent):
    type: Literal["joinGroup"]
    groupId: str = Field(..., min_length=1)


class LeaveGroupEvent(_InboundEvent):
    type: Literal["leaveGroup"]
    groupId: str = Field(..., min_length=1)


class NewMessageEvent(_InboundEvent):
    type: Literal["newMessage"]
    groupId: str = Field(..., min_length=1)
    content: str
    kind: MessageKind = MessageKind.TEXT
    replyToId: Optional[str] = None


class ToggleReactionEvent(_InboundEvent):
    type: Literal["toggleReaction"]
    groupId: str = Field(..., min_length=1)
    messageId: str = Field(..., min_length=1)
    emoji: str = Field(..., min_length=1)


class MarkSeenEvent(_InboundEvent):
    type: Literal["markSeen"]
    groupId: str = Field(..., min_length=1)
    messageId: str = Field(..., min_length=1)


class TypingEvent(_InboundEvent):
    type: Literal["typing"]
    groupId: str = Field(..., min_length=1)
    isTyping: bool = True


class DeleteMessageEvent(_InboundEvent):
    type: Literal["deleteMessage"]
    groupId: str = Field(..., min_length=1)
    messageId: str = Field(..., min_length=1)


class PinMessageEvent(_InboundEvent):
    type: Literal["pinMessage"]
    groupId: str = Field(..., min_length=1)
    messageId: str = Field(..., min_length=1)
    durationDays: Optional[float] = None


class UnpinMessageEvent(_InboundEvent):
    type: Literal["unpinMessage"]
    groupId: str = Field(..., min_length=1)
    messageId: str = Field(..., min_length=1)


class EditMessageEvent(_InboundEvent):
    type: Literal["editMessage"]
    groupId: str = Field(..., min_length=1)
    messageId: str = Field(..., min_length=1)
    content: str


InboundEvent = Annotated[
    Union[
        AuthenticateEvent,
        JoinGroupEvent,
        LeaveGroupEvent,
        NewMessageEvent,
        ToggleReactionEvent,
        MarkSeenEvent,
        TypingEvent,
        DeleteMessageEvent,
        PinMessageEvent,
        UnpinMessageEvent,
        EditMessageEvent,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter = TypeAdapter(InboundEvent)


def parse_event(data: Any) -> InboundEvent:
    """Validate a raw frame into a typed event.

    Raises:
        Malformed: If the frame is not an object, has an unknown ``type``,
            or fails field validation.
    """
    if not isinstance(data, dict):
        raise Malformed("Invalid event format: expected a JSON object")
    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise Malformed(f"Invalid event format: {location or 'event'}: {first.get('msg', 'invalid')}")


# =============================================================================
# Outbound events
# =============================================================================


def authenticated_event(user_id: str, display_name: str, role: str, group_ids: List[str]) -> dict:
    return {
        "type": "authenticated",
        "userId": user_id,
        "displayName": display_name,
        "role": role,
        "groups": group_ids,
    }


def online_users_event(user_ids: List[str]) -> dict:
    return {"type": "onlineUsers", "users": user_ids}


def group_history_event(group_id: str, messages: Iterable[Message], pins: Iterable[PinnedEntry]) -> dict:
    return {
        "type": "groupHistory",
        "groupId": group_id,
        "messages": [m.model_dump(mode="json") for m in messages],
        "pinnedEntries": [p.model_dump(mode="json") for p in pins],
    }


def message_received_event(message: Message) -> dict:
    return {"type": "messageReceived", **message.model_dump(mode="json")}


def message_edited_event(message: Message) -> dict:
    return {"type": "messageEdited", **message.model_dump(mode="json")}


def reaction_update_event(group_id: str, message_id: str, reactions: Dict[str, List[str]]) -> dict:
    return {
        "type": "reactionUpdate",
        "groupId": group_id,
        "messageId": message_id,
        "reactions": reactions,
    }


def seen_update_event(group_id: str, message_id: str, seen_by: List[str]) -> dict:
    return {
        "type": "seenUpdate",
        "groupId": group_id,
        "messageId": message_id,
        "seenBy": seen_by,
    }


def user_typing_event(user_id: str, group_id: str, is_typing: bool) -> dict:
    return {
        "type": "userTyping",
        "userId": user_id,
        "groupId": group_id,
        "isTyping": is_typing,
    }


def message_deleted_event(group_id: str, message_id: str, deleted_by: str) -> dict:
    return {
        "type": "messageDeleted",
        "groupId": group_id,
        "messageId": message_id,
        "deletedBy": deleted_by,
    }


def pinned_update_event(group_id: str, pins: Iterable[PinnedEntry]) -> dict:
    return {
        "type": "pinnedUpdate",
        "groupId": group_id,
        "pins": [p.model_dump(mode="json") for p in pins],
    }


def added_to_group_event(group: Dict[str, Any]) -> dict:
    return {"type": "addedToGroup", "group": group}
