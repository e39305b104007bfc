"""PinManager: per-group, time-expiring pinned message records.

A message has at most one active pin per group; re-pinning replaces the
previous entry. Expired pins are dropped lazily on read and by the periodic
sweep. Groups whose pins were dropped lazily are remembered so the next
sweep still reports them and subscribers get a ``pinnedUpdate``.
"""
import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Set

from groupchat.errors import Malformed, NotFound, PermissionDenied
from groupchat.groups.service import GroupRegistry

from .message_log import MessageLog
from .schemas import PinnedEntry

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


class PinManager:
    """Active pins for all groups."""

    def __init__(
        self,
        messages: MessageLog,
        groups: GroupRegistry,
        default_duration_days: float = 1,
        max_duration_days: float = 30,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._messages = messages
        self._groups = groups
        self._default_duration_days = default_duration_days
        self._max_duration_days = max_duration_days
        self._clock = clock

        # group_id -> OrderedDict[message_id -> PinnedEntry], oldest pin first
        self._pins: Dict[str, "OrderedDict[str, PinnedEntry]"] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()
        self._expired_unreported: Set[str] = set()

        messages.on_delete(self.forget_message)

    def _lock_for(self, group_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(group_id)
            if lock is None:
                lock = self._locks[group_id] = threading.RLock()
            return lock

    def _drop_expired(self, group_id: str, now: float) -> bool:
        """Remove expired entries for one group. Caller holds the group lock."""
        pins = self._pins.get(group_id)
        if not pins:
            return False
        expired = [mid for mid, entry in pins.items() if not entry.is_active(now)]
        for mid in expired:
            del pins[mid]
        return bool(expired)

    # =========================================================================
    # Operations
    # =========================================================================

    def pin(
        self,
        group_id: str,
        message_id: str,
        acting_admin_id: str,
        duration_days: Optional[float] = None,
    ) -> PinnedEntry:
        """Pin a message for ``duration_days`` (admin or superAdmin only).

        Raises:
            NotFound: Unknown group or message.
            PermissionDenied: Actor is not an admin of the group.
            Malformed: Duration is not positive or exceeds the maximum.
        """
        if not self._groups.exists(group_id):
            raise NotFound(f"Group {group_id!r} not found")
        if not self._groups.is_admin_of(group_id, acting_admin_id):
            raise PermissionDenied("Admin permissions required to pin messages")
        if duration_days is None:
            duration_days = self._default_duration_days
        if duration_days <= 0 or duration_days > self._max_duration_days:
            raise Malformed(f"durationDays must be within (0, {self._max_duration_days}]")

        with self._lock_for(group_id):
            message = self._messages.get(group_id, message_id)
            now = self._clock()
            entry = PinnedEntry(
                messageId=message_id,
                groupId=group_id,
                pinnedBy=acting_admin_id,
                pinnedAt=now,
                expiresAt=now + duration_days * SECONDS_PER_DAY,
                message=message.model_copy(deep=True),
            )
            pins = self._pins.setdefault(group_id, OrderedDict())
            pins.pop(message_id, None)
            pins[message_id] = entry

        logger.info(
            "[Pins] %s pinned %s in %s for %s day(s)",
            acting_admin_id, message_id, group_id, duration_days,
        )
        return entry

    def unpin(self, group_id: str, message_id: str, acting_admin_id: str) -> List[PinnedEntry]:
        """Remove an active pin. Returns the group's remaining active pins."""
        if not self._groups.exists(group_id):
            raise NotFound(f"Group {group_id!r} not found")
        if not self._groups.is_admin_of(group_id, acting_admin_id):
            raise PermissionDenied("Admin permissions required to unpin messages")
        with self._lock_for(group_id):
            if self._drop_expired(group_id, self._clock()):
                self._expired_unreported.add(group_id)
            pins = self._pins.get(group_id, {})
            if message_id not in pins:
                raise NotFound(f"Message {message_id!r} is not pinned")
            del pins[message_id]
            remaining = list(pins.values())
        logger.info("[Pins] %s unpinned %s in %s", acting_admin_id, message_id, group_id)
        return remaining

    def active_pins(self, group_id: str) -> List[PinnedEntry]:
        """Active pins for a group, oldest first; expired entries are dropped."""
        with self._lock_for(group_id):
            if self._drop_expired(group_id, self._clock()):
                self._expired_unreported.add(group_id)
            return list(self._pins.get(group_id, {}).values())

    def is_pinned(self, group_id: str, message_id: str) -> bool:
        entry = self._pins.get(group_id, {}).get(message_id)
        return entry is not None and entry.is_active(self._clock())

    def forget_message(self, group_id: str, message_id: str) -> bool:
        """Drop any pin for a deleted message. Returns True if one existed."""
        with self._lock_for(group_id):
            removed = self._pins.get(group_id, {}).pop(message_id, None)
        if removed is not None:
            logger.info("[Pins] Removed pin for deleted message %s in %s", message_id, group_id)
        return removed is not None

    def sweep_expired(self, now: Optional[float] = None) -> Dict[str, List[PinnedEntry]]:
        """Drop expired pins in every group.

        Each group is locked only while its own pins are examined.

        Returns:
            group_id -> new active pin list, for every group whose active set
            changed through expiry since the last sweep.
        """
        now = self._clock() if now is None else now
        changed: Dict[str, List[PinnedEntry]] = {}
        for group_id in list(self._pins.keys()):
            with self._lock_for(group_id):
                dropped = self._drop_expired(group_id, now)
                if dropped or group_id in self._expired_unreported:
                    self._expired_unreported.discard(group_id)
                    changed[group_id] = list(self._pins[group_id].values())
        if changed:
            logger.info("[Pins] Sweep expired pins in %d group(s)", len(changed))
        return changed
