"""Per-group ordered, size-bounded message history.

Each group's history is an insertion-ordered mapping of message ID to
message. Appending past ``max_history`` evicts from the front; eviction
silently drops the evicted messages' reaction and seen-by state.

Every public operation validates fully before mutating, so a raised
``ChatError`` leaves the log unchanged. Mutations for one group are
serialized by a per-group lock; unrelated groups proceed independently.
"""
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Tuple

from groupchat.errors import Malformed, NotAMember, NotFound, PermissionDenied
from groupchat.groups.service import GroupRegistry

from .schemas import Message, MessageKind

logger = logging.getLogger(__name__)

# Default maximum number of messages retained per group
MAX_HISTORY = 1000

# Default page size for message history pagination
DEFAULT_PAGE_SIZE = 50

# Maximum page size to prevent abuse
MAX_PAGE_SIZE = 100

DeleteListener = Callable[[str, str], None]


class MessageLog:
    """Message histories for all groups.

    Attributes:
        max_history: Maximum retained messages per group.
        max_page_size: Largest page the history endpoint serves.
    """

    def __init__(
        self,
        groups: GroupRegistry,
        max_history: int = MAX_HISTORY,
        max_message_length: int = 1000,
        max_emoji_length: int = 32,
        max_page_size: int = MAX_PAGE_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._groups = groups
        self.max_history = max_history
        self._max_message_length = max_message_length
        self._max_emoji_length = max_emoji_length
        self.max_page_size = max_page_size
        self._clock = clock

        # group_id -> OrderedDict[message_id -> Message], oldest first
        self._logs: Dict[str, "OrderedDict[str, Message]"] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._delete_listeners: List[DeleteListener] = []

    # =========================================================================
    # Internals
    # =========================================================================

    def _lock_for(self, group_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(group_id)
            if lock is None:
                lock = self._locks[group_id] = threading.RLock()
            return lock

    def _log_for(self, group_id: str) -> "OrderedDict[str, Message]":
        log = self._logs.get(group_id)
        if log is None:
            log = self._logs[group_id] = OrderedDict()
        return log

    def _require_member(self, group_id: str, user_id: str) -> None:
        if not self._groups.exists(group_id):
            raise NotFound(f"Group {group_id!r} not found")
        if not self._groups.is_member(group_id, user_id):
            raise NotAMember(f"{user_id} is not a member of {group_id}")

    def _find(self, group_id: str, message_id: str) -> Message:
        message = self._logs.get(group_id, {}).get(message_id)
        if message is None:
            raise NotFound(f"Message {message_id!r} not found")
        return message

    def _clean_text(self, body: str) -> str:
        text = (body or "").strip()
        if not text:
            raise Malformed("Message content is required")
        if len(text) > self._max_message_length:
            raise Malformed(f"Message exceeds {self._max_message_length} characters")
        return text

    def on_delete(self, listener: DeleteListener) -> None:
        """Register ``listener(group_id, message_id)``, called after each delete."""
        self._delete_listeners.append(listener)

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, group_id: str, message_id: str) -> Message:
        return self._find(group_id, message_id)

    def count(self, group_id: str) -> int:
        return len(self._logs.get(group_id, {}))

    def recent(
        self,
        group_id: str,
        limit: int = DEFAULT_PAGE_SIZE,
        before: Optional[float] = None,
        before_id: Optional[str] = None,
    ) -> List[Message]:
        """Most recent ``limit`` messages, oldest first.

        Args:
            group_id: The group.
            limit: Maximum number of messages (clamped to ``max_history``).
            before: Optional timestamp cursor; only messages created strictly
                before it are considered.
            before_id: Optional message cursor; only messages that precede it
                in the log are considered. Takes precedence over ``before``
                and is exact for messages sharing a timestamp.

        Raises:
            NotFound: ``before_id`` is not in the log.
        """
        limit = max(0, min(limit, self.max_history))
        if limit == 0:
            return []
        with self._lock_for(group_id):
            log = self._logs.get(group_id, {})
            if before_id is not None and before_id not in log:
                raise NotFound(f"Message {before_id!r} not found")
            messages = list(log.values())
        if before_id is not None:
            position = next(i for i, m in enumerate(messages) if m.id == before_id)
            messages = messages[:position]
        elif before is not None:
            messages = [m for m in messages if m.createdAt < before]
        return messages[-limit:]

    # =========================================================================
    # Mutations
    # =========================================================================

    def append(
        self,
        group_id: str,
        author_id: str,
        body: str,
        kind: MessageKind = MessageKind.TEXT,
        reply_to_id: Optional[str] = None,
    ) -> Message:
        """Append a message authored by a group member.

        Raises:
            NotFound: Unknown group, or ``reply_to_id`` not in the log.
            NotAMember: Author is not a member of the group.
            PermissionDenied: Media message in a group with media disabled.
            Malformed: Empty or oversize body.
        """
        self._require_member(group_id, author_id)
        group = self._groups.get(group_id)
        if kind != MessageKind.TEXT and not group.settings.allowMedia:
            raise PermissionDenied("Media messages are disabled in this group")
        if kind == MessageKind.TEXT:
            body = self._clean_text(body)
        elif not body or not body.strip():
            raise Malformed("Media reference is required")

        with self._lock_for(group_id):
            log = self._log_for(group_id)
            if reply_to_id is not None and reply_to_id not in log:
                raise NotFound(f"Message {reply_to_id!r} not found")

            message = Message(
                groupId=group_id,
                authorId=author_id,
                createdAt=self._clock(),
                kind=kind,
                body=body.strip(),
                replyToId=reply_to_id,
                seenBy={author_id},
            )
            log[message.id] = message

            evicted = 0
            while len(log) > self.max_history:
                log.popitem(last=False)
                evicted += 1

        if evicted:
            logger.debug("[MessageLog] Evicted %d message(s) from %s", evicted, group_id)
        return message

    def delete(self, group_id: str, message_id: str, acting_user_id: str) -> Message:
        """Hard-delete a message (author, group admin or superAdmin only).

        Returns:
            The removed message, flagged ``deleted``.
        """
        with self._lock_for(group_id):
            message = self._find(group_id, message_id)
            if message.authorId != acting_user_id and not self._groups.is_admin_of(group_id, acting_user_id):
                raise PermissionDenied("Only the author or a group admin may delete this message")
            del self._logs[group_id][message_id]

        for listener in self._delete_listeners:
            listener(group_id, message_id)

        logger.info("[MessageLog] %s deleted message %s in %s", acting_user_id, message_id, group_id)
        return message.model_copy(update={"deleted": True})

    def edit(self, group_id: str, message_id: str, acting_user_id: str, body: str) -> Message:
        """Replace the body of a text message in place (author only)."""
        text = self._clean_text(body)
        with self._lock_for(group_id):
            message = self._find(group_id, message_id)
            if message.authorId != acting_user_id:
                raise PermissionDenied("Only the author may edit this message")
            if message.kind != MessageKind.TEXT:
                raise Malformed("Only text messages can be edited")
            message.body = text
            message.editedAt = self._clock()
        return message

    def toggle_reaction(
        self, group_id: str, message_id: str, user_id: str, emoji: str
    ) -> Dict[str, List[str]]:
        """Add ``user_id`` to ``reactions[emoji]`` if absent, else remove it.

        Operations by different users touch disjoint set entries, so they
        commute. An emoji whose set becomes empty is dropped.

        Returns:
            Snapshot of the message's reactions after the toggle.
        """
        emoji = (emoji or "").strip()
        if not emoji or len(emoji) > self._max_emoji_length:
            raise Malformed("Invalid emoji")
        self._require_member(group_id, user_id)

        with self._lock_for(group_id):
            message = self._find(group_id, message_id)
            users = message.reactions.get(emoji)
            if users is None:
                message.reactions[emoji] = {user_id}
            elif user_id in users:
                users.discard(user_id)
                if not users:
                    del message.reactions[emoji]
            else:
                users.add(user_id)
            return message.reactions_snapshot()

    def mark_seen(self, group_id: str, message_id: str, user_id: str) -> Tuple[List[str], bool]:
        """Record that ``user_id`` has seen a message.

        Returns:
            Tuple of (seenBy snapshot, changed). ``changed`` is False when the
            user was already present.
        """
        self._require_member(group_id, user_id)
        with self._lock_for(group_id):
            message = self._find(group_id, message_id)
            if user_id in message.seenBy:
                return message.seen_by_snapshot(), False
            message.seenBy.add(user_id)
            return message.seen_by_snapshot(), True
