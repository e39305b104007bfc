"""GroupRegistry: group metadata, membership and admin sets.

``is_member`` and ``is_admin_of`` are the authorization gates the message
log, the pin manager and the session hub consult before any mutation.
A superAdmin passes every admin check but is not implicitly a member.
"""
import logging
import threading
from typing import Dict, List, Optional

from groupchat.errors import (
    AlreadyMember,
    DuplicateName,
    GroupFull,
    Malformed,
    NotAMember,
    NotFound,
    PermissionDenied,
)
from groupchat.identity.schemas import Role, User
from groupchat.identity.service import IdentityStore

from .schemas import Group, GroupDetail, GroupOptions, GroupSummary

logger = logging.getLogger(__name__)


class GroupRegistry:
    """Maps group identifiers to group records.

    Groups are kept in creation order; they are never deleted here.
    """

    def __init__(self, identity: IdentityStore, default_max_members: int = 100) -> None:
        self._identity = identity
        self._default_max_members = default_max_members
        self._groups: Dict[str, Group] = {}
        self._lock = threading.RLock()

    # =========================================================================
    # Predicates
    # =========================================================================

    def is_member(self, group_id: str, user_id: str) -> bool:
        group = self._groups.get(group_id)
        return group is not None and user_id in group.memberIds

    def is_admin_of(self, group_id: str, user_id: str) -> bool:
        """True if the user is in the group's admin set or is a superAdmin."""
        user = self._identity.find(user_id)
        if user is not None and user.role == Role.SUPER_ADMIN:
            return group_id in self._groups
        group = self._groups.get(group_id)
        return group is not None and user_id in group.adminIds

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, group_id: str) -> Group:
        group = self._groups.get(group_id)
        if group is None:
            raise NotFound(f"Group {group_id!r} not found")
        return group

    def exists(self, group_id: str) -> bool:
        return group_id in self._groups

    def groups_for(self, user_id: str) -> List[Group]:
        """Groups the user belongs to, in creation order."""
        return [g for g in self._groups.values() if user_id in g.memberIds]

    def all_groups(self) -> List[Group]:
        return list(self._groups.values())

    def summarize(self, group: Group, user_id: str) -> GroupSummary:
        return GroupSummary(
            id=group.id,
            name=group.name,
            description=group.description,
            memberCount=len(group.memberIds),
            isAdmin=self.is_admin_of(group.id, user_id),
            isDefault=group.isDefault,
            settings=group.settings,
            createdAt=group.createdAt,
        )

    def detail(self, group: Group, user_id: str) -> GroupDetail:
        summary = self.summarize(group, user_id)
        return GroupDetail(
            **summary.model_dump(),
            memberIds=sorted(group.memberIds),
            adminIds=sorted(group.adminIds),
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _name_taken(self, name: str, exclude_id: Optional[str] = None) -> bool:
        folded = name.strip().casefold()
        return any(
            g.name.casefold() == folded and g.id != exclude_id
            for g in self._groups.values()
        )

    def create(
        self,
        name: str,
        description: str,
        creator: User,
        *,
        group_id: Optional[str] = None,
        is_default: bool = False,
    ) -> Group:
        """Create a group; the creator becomes its sole member and admin."""
        name = name.strip()
        if not name:
            raise Malformed("Group name is required")
        with self._lock:
            if self._name_taken(name):
                raise DuplicateName(f"Group name {name!r} already exists")
            if group_id is not None and group_id in self._groups:
                raise DuplicateName(f"Group id {group_id!r} already exists")
            group = Group(
                name=name,
                description=description,
                memberIds={creator.id},
                adminIds={creator.id},
                isDefault=is_default,
                settings=GroupOptions(maxMembers=self._default_max_members),
            )
            if group_id is not None:
                group.id = group_id
            self._groups[group.id] = group

        logger.info("[Groups] %s created group %s (%s)", creator.id, group.id, group.name)
        return group

    def update(
        self,
        group_id: str,
        actor: User,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        allow_media: Optional[bool] = None,
        max_members: Optional[int] = None,
    ) -> Group:
        with self._lock:
            group = self.get(group_id)
            if not self.is_admin_of(group_id, actor.id):
                raise PermissionDenied("Only group admins may update the group")
            if name is not None:
                name = name.strip()
                if not name:
                    raise Malformed("Group name is required")
                if self._name_taken(name, exclude_id=group_id):
                    raise DuplicateName(f"Group name {name!r} already exists")
            if max_members is not None and max_members < len(group.memberIds):
                raise Malformed("maxMembers cannot be below the current member count")

            if name is not None:
                group.name = name
            if description is not None:
                group.description = description
            if allow_media is not None:
                group.settings.allowMedia = allow_media
            if max_members is not None:
                group.settings.maxMembers = max_members

        logger.info("[Groups] %s updated group %s", actor.id, group_id)
        return group

    # =========================================================================
    # Membership
    # =========================================================================

    def add_member(self, group_id: str, user_id: str, acting_admin: User) -> Group:
        with self._lock:
            group = self.get(group_id)
            if not self.is_admin_of(group_id, acting_admin.id):
                raise PermissionDenied("Only group admins may add members")
            user = self._identity.lookup(user_id)
            if user.id in group.memberIds:
                raise AlreadyMember(f"{user.id} is already a member of {group_id}")
            if len(group.memberIds) >= group.settings.maxMembers:
                raise GroupFull()
            group.memberIds.add(user.id)

        logger.info("[Groups] %s added %s to %s", acting_admin.id, user.id, group_id)
        return group

    def promote_to_admin(self, group_id: str, user_id: str, acting_admin: User) -> Group:
        with self._lock:
            group = self.get(group_id)
            if not self.is_admin_of(group_id, acting_admin.id):
                raise PermissionDenied("Only group admins may promote members")
            user_id = self._identity.lookup(user_id).id
            if user_id not in group.memberIds:
                raise NotAMember(f"{user_id} is not a member of {group_id}")
            group.adminIds.add(user_id)

        logger.info("[Groups] %s promoted %s in %s", acting_admin.id, user_id, group_id)
        return group

    def join_default_groups(self, user_id: str) -> List[Group]:
        """Add a user to every default group that still has capacity."""
        joined = []
        with self._lock:
            for group in self._groups.values():
                if not group.isDefault or user_id in group.memberIds:
                    continue
                if len(group.memberIds) >= group.settings.maxMembers:
                    logger.warning("[Groups] Default group %s is full; skipping %s", group.id, user_id)
                    continue
                group.memberIds.add(user_id)
                joined.append(group)
        return joined

    def ensure_default_group(
        self,
        group_id: str,
        name: str,
        description: str,
        users: List[User],
    ) -> Group:
        """Create (once) the default group and enroll the given users.

        Users with an admin or superAdmin role become group admins.
        """
        with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                if self._name_taken(name):
                    raise DuplicateName(f"Group name {name!r} already exists")
                group = Group(
                    id=group_id,
                    name=name,
                    description=description,
                    isDefault=True,
                    settings=GroupOptions(maxMembers=max(self._default_max_members, len(users))),
                )
                self._groups[group_id] = group
                logger.info("[Groups] Default group %s created", group_id)
            for user in users:
                group.memberIds.add(user.id)
                if user.role in (Role.ADMIN, Role.SUPER_ADMIN):
                    group.adminIds.add(user.id)
        return group
