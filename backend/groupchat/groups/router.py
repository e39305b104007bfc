"""Group endpoints.

Endpoints:
    GET   /groups                      - Groups the caller belongs to
    POST  /groups                      - Create a group (caller becomes admin)
    GET   /groups/{group_id}           - Group detail (members or superAdmin)
    PATCH /groups/{group_id}           - Update name/description/settings (admins)
    POST  /groups/{group_id}/members   - Add a member (admins)
    POST  /groups/{group_id}/admins    - Promote a member to admin (admins)
"""
import logging
from typing import List

from fastapi import APIRouter, Depends

from groupchat.chat.hub import SessionHub
from groupchat.errors import NotAMember
from groupchat.identity.dependencies import get_current_user, hub_dependency
from groupchat.identity.schemas import User

from .schemas import GroupCreate, GroupDetail, GroupSummary, GroupUpdate, MemberRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/groups", tags=["groups"])


@router.get("", response_model=List[GroupSummary])
async def list_groups(
    user: User = Depends(get_current_user),
    hub: SessionHub = Depends(hub_dependency),
) -> List[GroupSummary]:
    return [hub.groups.summarize(g, user.id) for g in hub.groups.groups_for(user.id)]


@router.post("", response_model=GroupDetail, status_code=201)
async def create_group(
    body: GroupCreate,
    user: User = Depends(get_current_user),
    hub: SessionHub = Depends(hub_dependency),
) -> GroupDetail:
    group = hub.groups.create(body.name, body.description, user)
    hub.member_added(group.id, user.id)
    return hub.groups.detail(group, user.id)


@router.get("/{group_id}", response_model=GroupDetail)
async def get_group(
    group_id: str,
    user: User = Depends(get_current_user),
    hub: SessionHub = Depends(hub_dependency),
) -> GroupDetail:
    group = hub.groups.get(group_id)
    if not hub.groups.is_member(group_id, user.id) and not user.is_super_admin:
        raise NotAMember(f"{user.id} is not a member of {group_id}")
    return hub.groups.detail(group, user.id)


@router.patch("/{group_id}", response_model=GroupDetail)
async def update_group(
    group_id: str,
    body: GroupUpdate,
    user: User = Depends(get_current_user),
    hub: SessionHub = Depends(hub_dependency),
) -> GroupDetail:
    group = hub.groups.update(
        group_id,
        user,
        name=body.name,
        description=body.description,
        allow_media=body.allowMedia,
        max_members=body.maxMembers,
    )
    return hub.groups.detail(group, user.id)


@router.post("/{group_id}/members", response_model=GroupDetail)
async def add_member(
    group_id: str,
    body: MemberRequest,
    user: User = Depends(get_current_user),
    hub: SessionHub = Depends(hub_dependency),
) -> GroupDetail:
    """Add a member; their live sessions are subscribed and notified."""
    group = hub.groups.add_member(group_id, body.userId, user)
    subscribed = hub.member_added(group_id, hub.identity.lookup(body.userId).id)
    logger.debug("[Groups] Subscribed %d live session(s) to %s", subscribed, group_id)
    return hub.groups.detail(group, user.id)


@router.post("/{group_id}/admins", response_model=GroupDetail)
async def add_admin(
    group_id: str,
    body: MemberRequest,
    user: User = Depends(get_current_user),
    hub: SessionHub = Depends(hub_dependency),
) -> GroupDetail:
    group = hub.groups.promote_to_admin(group_id, body.userId, user)
    return hub.groups.detail(group, user.id)
