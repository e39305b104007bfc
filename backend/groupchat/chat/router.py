"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - WebSocket /ws/chat: Real-time group chat protocol
    - GET    /groups/{group_id}/messages: Paginated message history
    - GET    /groups/{group_id}/pins: Active pinned messages
    - PATCH  /groups/{group_id}/messages/{message_id}: Edit a message
    - DELETE /groups/{group_id}/messages/{message_id}: Delete a message
    - POST   /groups/{group_id}/messages/{message_id}/pin: Pin a message
    - DELETE /groups/{group_id}/messages/{message_id}/pin: Unpin a message
    - GET    /presence: Online users

The HTTP mutations run the same hub operations as their websocket
counterparts, so subscribers see identical broadcasts either way.

Protocol (client -> server), every frame is a JSON object with ``type``:
    - authenticate {token}
    - joinGroup / leaveGroup {groupId}
    - newMessage {groupId, content, kind?, replyToId?}
    - editMessage {groupId, messageId, content}
    - toggleReaction {groupId, messageId, emoji}
    - markSeen {groupId, messageId}
    - typing {groupId, isTyping}
    - deleteMessage / unpinMessage {groupId, messageId}
    - pinMessage {groupId, messageId, durationDays?}
"""
import json
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from groupchat.errors import Malformed, NotAMember, NotFound
from groupchat.identity.dependencies import get_current_user, hub_dependency
from groupchat.identity.schemas import User

from .hub import SessionHub, get_hub
from .message_log import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from .schemas import EditRequest, PinRequest

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_member(hub: SessionHub, group_id: str, user: User) -> None:
    if not hub.groups.exists(group_id):
        raise NotFound(f"Group {group_id!r} not found")
    if not hub.groups.is_member(group_id, user.id):
        raise NotAMember(f"{user.id} is not a member of {group_id}")


# =============================================================================
# WebSocket
# =============================================================================


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="Optional token; same as sending authenticate"),
) -> None:
    """WebSocket endpoint for real-time group chat.

    A connection starts unauthenticated; every event other than
    ``authenticate`` is rejected with ``AUTH_REQUIRED`` until it succeeds.
    Rejected events produce an ``error`` frame and the connection stays open.
    """
    hub = get_hub()
    await websocket.accept()
    connection_id = uuid.uuid4().hex

    async def close_connection() -> None:
        await websocket.close(code=1011)

    hub.connect(connection_id, websocket.send_json, on_failure=close_connection)
    logger.info("[WS] Connection %s accepted", connection_id)

    try:
        if token:
            await hub.handle_event(connection_id, {"type": "authenticate", "token": token})

        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            raw = frame.get("text")
            if raw is None:
                hub.broadcast.to_connection(
                    connection_id, Malformed("Binary frames are not supported").to_event()
                )
                continue
            try:
                data = json.loads(raw)
            except ValueError:
                hub.broadcast.to_connection(
                    connection_id, Malformed("Frame is not valid JSON").to_event()
                )
                continue
            logger.debug("[WS] %s received: type=%s", connection_id,
                         data.get("type", "?") if isinstance(data, dict) else "?")
            await hub.handle_event(connection_id, data)

    except WebSocketDisconnect:
        logger.info("[WS] Connection %s closed by client", connection_id)
    finally:
        await hub.disconnect(connection_id)


# =============================================================================
# HTTP
# =============================================================================


@router.get("/groups/{group_id}/messages")
async def get_message_history(
    group_id: str,
    before: Optional[float] = Query(None, description="Timestamp cursor (get messages before this time)"),
    beforeId: Optional[str] = Query(None, description="Message cursor (get messages before this message)"),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, description="Number of messages to return"),
    user: User = Depends(get_current_user),
    hub: SessionHub = Depends(hub_dependency),
) -> dict:
    """Paginated history for a group, oldest first.

    Clients fetch older pages by passing the ``id`` of the oldest message
    they currently hold as ``beforeId``. The ``before`` timestamp cursor is
    still accepted; ``beforeId`` wins when both are given.

    Example:
        GET /groups/general/messages?limit=50
        GET /groups/general/messages?beforeId=3f2a...&limit=50
    """
    _require_member(hub, group_id, user)
    limit = min(limit, hub.messages.max_page_size)
    messages = hub.messages.recent(group_id, limit, before, before_id=beforeId)

    has_more = False
    if messages:
        has_more = bool(hub.messages.recent(group_id, 1, before_id=messages[0].id))

    return {
        "messages": [m.model_dump(mode="json") for m in messages],
        "hasMore": has_more,
    }


@router.get("/groups/{group_id}/pins")
async def get_pins(
    group_id: str,
    user: User = Depends(get_current_user),
    hub: SessionHub = Depends(hub_dependency),
) -> dict:
    _require_member(hub, group_id, user)
    pins = hub.pins.active_pins(group_id)
    return {"groupId": group_id, "pins": [p.model_dump(mode="json") for p in pins]}


@router.patch("/groups/{group_id}/messages/{message_id}")
async def edit_message(
    group_id: str,
    message_id: str,
    body: EditRequest,
    user: User = Depends(get_current_user),
    hub: SessionHub = Depends(hub_dependency),
) -> dict:
    message = hub.apply_edit(group_id, message_id, user.id, body.content)
    return message.model_dump(mode="json")


@router.delete("/groups/{group_id}/messages/{message_id}")
async def delete_message(
    group_id: str,
    message_id: str,
    user: User = Depends(get_current_user),
    hub: SessionHub = Depends(hub_dependency),
) -> dict:
    """Delete a message (author, group admin or superAdmin)."""
    hub.apply_delete(group_id, message_id, user.id)
    return {"groupId": group_id, "messageId": message_id, "deletedBy": user.id}


@router.post("/groups/{group_id}/messages/{message_id}/pin")
async def pin_message(
    group_id: str,
    message_id: str,
    body: Optional[PinRequest] = None,
    user: User = Depends(get_current_user),
    hub: SessionHub = Depends(hub_dependency),
) -> dict:
    duration = body.durationDays if body is not None else None
    entry = hub.apply_pin(group_id, message_id, user.id, duration)
    return entry.model_dump(mode="json")


@router.delete("/groups/{group_id}/messages/{message_id}/pin")
async def unpin_message(
    group_id: str,
    message_id: str,
    user: User = Depends(get_current_user),
    hub: SessionHub = Depends(hub_dependency),
) -> dict:
    remaining = hub.apply_unpin(group_id, message_id, user.id)
    return {"groupId": group_id, "pins": [p.model_dump(mode="json") for p in remaining]}


@router.get("/presence")
async def presence(
    user: User = Depends(get_current_user),
    hub: SessionHub = Depends(hub_dependency),
) -> dict:
    return {"users": hub.online_users()}
