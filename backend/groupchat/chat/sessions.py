"""Connection sessions.

Each connection moves through ``UNAUTHENTICATED -> AUTHENTICATED -> CLOSED``.
A connection that authenticates gets a live session binding it to one user;
a user may hold several live sessions at once (multi-device).
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


@dataclass
class Session:
    connection_id: str
    user_id: Optional[str] = None
    state: ConnectionState = ConnectionState.UNAUTHENTICATED
    subscribed_group_ids: Set[str] = field(default_factory=set)

    @property
    def is_authenticated(self) -> bool:
        return self.state == ConnectionState.AUTHENTICATED


class SessionRegistry:
    """Tracks every open connection and the user/groups it is bound to."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}

    def open(self, connection_id: str) -> Session:
        session = self._sessions.get(connection_id)
        if session is None:
            session = self._sessions[connection_id] = Session(connection_id=connection_id)
        return session

    def get(self, connection_id: str) -> Optional[Session]:
        return self._sessions.get(connection_id)

    def bind(self, connection_id: str, user_id: str, group_ids: Set[str]) -> Session:
        session = self.open(connection_id)
        session.user_id = user_id
        session.state = ConnectionState.AUTHENTICATED
        session.subscribed_group_ids = set(group_ids)
        logger.debug("[Sessions] %s bound to %s", connection_id, user_id)
        return session

    def close(self, connection_id: str) -> Optional[Session]:
        """Remove and return the session; None if already closed."""
        session = self._sessions.pop(connection_id, None)
        if session is not None:
            session.state = ConnectionState.CLOSED
            logger.debug("[Sessions] %s closed", connection_id)
        return session

    def sessions_for_user(self, user_id: str) -> List[Session]:
        return [
            s for s in self._sessions.values()
            if s.is_authenticated and s.user_id == user_id
        ]

    def subscribers(self, group_id: str) -> List[str]:
        """Connection IDs of authenticated sessions subscribed to a group."""
        return [
            s.connection_id for s in self._sessions.values()
            if s.is_authenticated and group_id in s.subscribed_group_ids
        ]

    def authenticated_connections(self) -> List[str]:
        return [s.connection_id for s in self._sessions.values() if s.is_authenticated]

    def online_users(self) -> List[str]:
        return sorted({
            s.user_id for s in self._sessions.values()
            if s.is_authenticated and s.user_id is not None
        })

    def __len__(self) -> int:
        return len(self._sessions)
