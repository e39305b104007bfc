"""IdentityStore: in-memory user records with hashed credentials.

Passwords are hashed with passlib's pbkdf2_sha256; verification goes through
passlib, which compares digests in constant time. Unknown identifiers still
run one verification against a dummy hash so response timing does not reveal
which usernames exist.
"""
import logging
import threading
import time
from typing import Dict, Iterable, List, Optional

from passlib.hash import pbkdf2_sha256

from groupchat.config import BootstrapUser
from groupchat.errors import DuplicateIdentifier, InvalidCredential, NotFound, PermissionDenied

from .schemas import Role, User, UserCreate

logger = logging.getLogger(__name__)

_DUMMY_HASH = pbkdf2_sha256.hash("groupchat-dummy-credential")


def normalize_identifier(identifier: str) -> str:
    return identifier.strip().lower()


class IdentityStore:
    """Maps user identifiers to profile/role data.

    Does not touch connections or groups; callers combine it with the
    group registry where needed.
    """

    def __init__(self) -> None:
        self._users: Dict[str, User] = {}
        self._lock = threading.RLock()

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def lookup(self, identifier: str) -> User:
        user = self._users.get(normalize_identifier(identifier))
        if user is None:
            raise NotFound(f"User {identifier!r} not found")
        return user

    def find(self, identifier: str) -> Optional[User]:
        return self._users.get(normalize_identifier(identifier))

    def exists(self, identifier: str) -> bool:
        return normalize_identifier(identifier) in self._users

    def list_users(self) -> List[User]:
        return list(self._users.values())

    def verify(self, identifier: str, credential: str) -> User:
        """Check a password and return the user.

        Raises:
            InvalidCredential: Unknown identifier or wrong password. The two
                cases are indistinguishable to the caller.
        """
        user = self.find(identifier)
        if user is None:
            pbkdf2_sha256.verify(credential, _DUMMY_HASH)
            raise InvalidCredential()
        if not pbkdf2_sha256.verify(credential, user.passwordHash):
            raise InvalidCredential()
        return user

    # -----------------------------------------------------------------------
    # Mutations
    # -----------------------------------------------------------------------

    def create_user(self, profile: UserCreate, requesting_actor: Optional[User]) -> User:
        """Create a user on behalf of ``requesting_actor``.

        Admins may create ordinary members; only a superAdmin may create
        users with an elevated role. ``requesting_actor=None`` is reserved
        for bootstrap.
        """
        if requesting_actor is not None:
            if profile.role != Role.MEMBER and requesting_actor.role != Role.SUPER_ADMIN:
                raise PermissionDenied("Only a superAdmin may create elevated users")
            if requesting_actor.role not in (Role.ADMIN, Role.SUPER_ADMIN):
                raise PermissionDenied("Only admins may create users")

        user_id = normalize_identifier(profile.username)
        password_hash = pbkdf2_sha256.hash(profile.password)
        with self._lock:
            if user_id in self._users:
                raise DuplicateIdentifier(f"User {user_id!r} already exists")
            user = User(
                id=user_id,
                displayName=profile.displayName or profile.username,
                role=profile.role,
                passwordHash=password_hash,
            )
            self._users[user_id] = user

        logger.info(
            "[Identity] Created user %s (role=%s) by %s",
            user_id,
            user.role.value,
            requesting_actor.id if requesting_actor else "bootstrap",
        )
        return user

    def set_role(self, user_id: str, role: Role, actor: User) -> User:
        if actor.role != Role.SUPER_ADMIN:
            raise PermissionDenied("Only a superAdmin may change roles")
        with self._lock:
            user = self.lookup(user_id)
            user.role = role
        logger.info("[Identity] %s set role of %s to %s", actor.id, user.id, role.value)
        return user

    def touch(self, user_id: str) -> None:
        user = self.find(user_id)
        if user is not None:
            user.lastSeenAt = time.time()

    def bootstrap(self, entries: Iterable[BootstrapUser]) -> List[User]:
        """Create configured users that do not exist yet."""
        created = []
        for entry in entries:
            if self.exists(entry.username):
                continue
            created.append(self.create_user(
                UserCreate(
                    username=entry.username,
                    password=entry.password,
                    displayName=entry.display_name,
                    role=Role(entry.role),
                ),
                requesting_actor=None,
            ))
        return created
