"""Session/presence hub for real-time group chat.

The hub is the single owner of live chat state. It binds connections to
users, routes inbound events to the stores (group registry, message log,
pin manager) and fans resulting deltas out through the broadcast router.

Connection state machine:
    UNAUTHENTICATED --authenticate--> AUTHENTICATED --disconnect--> CLOSED
    (disconnect is valid from any state and idempotent)

Error policy:
    Every ``ChatError`` raised while handling an event is turned into a
    unicast ``error`` event for the originating connection. Any other
    exception is logged and reported as ``INTERNAL_ERROR``. Neither closes
    the connection or touches other sessions.

Concurrency:
    Store operations are synchronous and complete without suspension, so on
    the event loop each operation plus the enqueueing of its broadcast runs
    without interleaving. Per-connection outboxes preserve that order on the
    wire. The stores additionally hold per-group locks for callers on other
    threads.
"""
import asyncio
import logging
from typing import Dict, List, Optional, Set

from groupchat.config import AppConfig, get_config
from groupchat.errors import AuthRequired, ChatError, InternalError, Malformed, NotAMember, NotFound
from groupchat.groups.service import GroupRegistry
from groupchat.identity.schemas import User
from groupchat.identity.service import IdentityStore
from groupchat.identity.tokens import TokenService

from . import events
from .broadcast import BroadcastRouter, CloseCallback, Transport
from .message_log import MessageLog
from .pins import PinManager
from .schemas import Message, MessageKind, PinnedEntry
from .sessions import Session, SessionRegistry

logger = logging.getLogger(__name__)


class SessionHub:
    """Routes connection events to the chat stores and broadcasts the results."""

    def __init__(
        self,
        identity: IdentityStore,
        groups: GroupRegistry,
        messages: MessageLog,
        pins: PinManager,
        tokens: TokenService,
        sessions: Optional[SessionRegistry] = None,
        broadcast: Optional[BroadcastRouter] = None,
        join_history_limit: int = 50,
    ) -> None:
        self.identity = identity
        self.groups = groups
        self.messages = messages
        self.pins = pins
        self.tokens = tokens
        self.sessions = sessions or SessionRegistry()
        self.broadcast = broadcast or BroadcastRouter(self.sessions)
        self._join_history_limit = join_history_limit

        # group_id -> user IDs currently typing (ephemeral, never persisted)
        self.typing: Dict[str, Set[str]] = {}

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_session(self, connection_id: str) -> Session:
        session = self.sessions.get(connection_id)
        if session is None or not session.is_authenticated:
            raise AuthRequired()
        return session

    def _require_member(self, group_id: str, user_id: str) -> None:
        if not self.groups.exists(group_id):
            raise NotFound(f"Group {group_id!r} not found")
        if not self.groups.is_member(group_id, user_id):
            raise NotAMember(f"{user_id} is not a member of {group_id}")

    def online_users(self) -> List[str]:
        return self.sessions.online_users()

    def _clear_typing(self, group_id: str, user_id: str, exclude: Optional[str] = None) -> None:
        typing_set = self.typing.get(group_id)
        if not typing_set or user_id not in typing_set:
            return
        typing_set.discard(user_id)
        if not typing_set:
            del self.typing[group_id]
        self.broadcast.to_group(
            group_id, events.user_typing_event(user_id, group_id, False), exclude=exclude
        )

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def connect(
        self,
        connection_id: str,
        transport: Transport,
        on_failure: Optional[CloseCallback] = None,
    ) -> Session:
        """Register a new, unauthenticated connection."""
        session = self.sessions.open(connection_id)
        self.broadcast.attach(connection_id, transport, on_failure)
        logger.debug("[Hub] Connection %s opened", connection_id)
        return session

    async def authenticate(self, connection_id: str, token: str) -> User:
        """Validate a token and bind the connection to its user.

        Subscribes the connection to every group the user belongs to, marks
        the user online and broadcasts the presence list. On failure the
        connection stays unauthenticated.
        """
        session = self.sessions.get(connection_id)
        if session is None:
            session = self.sessions.open(connection_id)
        if session.is_authenticated:
            raise Malformed("Connection is already authenticated")

        claims = self.tokens.decode(token)
        user = self.identity.find(claims.user_id)
        if user is None:
            raise AuthRequired("Unknown user")

        group_ids = [g.id for g in self.groups.groups_for(user.id)]
        self.sessions.bind(connection_id, user.id, set(group_ids))
        self.identity.touch(user.id)

        logger.info(
            "[Hub] %s authenticated on %s (%d group(s))", user.id, connection_id, len(group_ids)
        )
        self.broadcast.to_connection(
            connection_id,
            events.authenticated_event(user.id, user.displayName, user.role.value, group_ids),
        )
        self.broadcast.to_all(events.online_users_event(self.online_users()))
        return user

    async def disconnect(self, connection_id: str) -> None:
        """Tear down a connection. Safe to call repeatedly."""
        self.broadcast.detach(connection_id)
        session = self.sessions.close(connection_id)
        if session is None or session.user_id is None:
            return

        user_id = session.user_id
        for group_id in list(self.typing.keys()):
            self._clear_typing(group_id, user_id)
        still_online = bool(self.sessions.sessions_for_user(user_id))
        self.identity.touch(user_id)

        logger.info("[Hub] %s disconnected from %s", user_id, connection_id)
        if not still_online:
            self.broadcast.to_all(events.online_users_event(self.online_users()))

    # =========================================================================
    # Group subscription
    # =========================================================================

    async def join_group(self, connection_id: str, group_id: str) -> None:
        """Subscribe to a group and replay its recent history to this connection only."""
        session = self._require_session(connection_id)
        self._require_member(group_id, session.user_id)
        session.subscribed_group_ids.add(group_id)

        history = self.messages.recent(group_id, self._join_history_limit)
        pins = self.pins.active_pins(group_id)
        self.broadcast.to_connection(
            connection_id, events.group_history_event(group_id, history, pins)
        )
        logger.info("[Hub] %s joined %s (%d messages replayed)", session.user_id, group_id, len(history))

    async def leave_group(self, connection_id: str, group_id: str) -> None:
        session = self._require_session(connection_id)
        session.subscribed_group_ids.discard(group_id)
        self._clear_typing(group_id, session.user_id)
        logger.info("[Hub] %s left %s", session.user_id, group_id)

    def member_added(self, group_id: str, user_id: str) -> int:
        """Subscribe a newly added member's live sessions to the group.

        Returns:
            Number of sessions subscribed.
        """
        group = self.groups.get(group_id)
        sessions = self.sessions.sessions_for_user(user_id)
        if not sessions:
            return 0
        summary = self.groups.summarize(group, user_id).model_dump(mode="json")
        for session in sessions:
            session.subscribed_group_ids.add(group_id)
        self.broadcast.to_connections(
            [s.connection_id for s in sessions], events.added_to_group_event(summary)
        )
        return len(sessions)

    # =========================================================================
    # Messages
    # =========================================================================

    async def send_message(
        self,
        connection_id: str,
        group_id: str,
        content: str,
        kind: MessageKind = MessageKind.TEXT,
        reply_to_id: Optional[str] = None,
    ) -> Message:
        session = self._require_session(connection_id)
        message = self.messages.append(group_id, session.user_id, content, kind, reply_to_id)
        self._clear_typing(group_id, session.user_id, exclude=connection_id)
        self.broadcast.to_group(group_id, events.message_received_event(message))
        logger.info(
            "[Hub] Message %s from %s in %s: %s",
            message.id, session.user_id, group_id, message.body[:50],
        )
        return message

    async def edit_message(self, connection_id: str, group_id: str, message_id: str, content: str) -> Message:
        session = self._require_session(connection_id)
        return self.apply_edit(group_id, message_id, session.user_id, content)

    def apply_edit(self, group_id: str, message_id: str, user_id: str, content: str) -> Message:
        self._require_member(group_id, user_id)
        message = self.messages.edit(group_id, message_id, user_id, content)
        self.broadcast.to_group(group_id, events.message_edited_event(message))
        return message

    async def delete_message(self, connection_id: str, group_id: str, message_id: str) -> Message:
        session = self._require_session(connection_id)
        return self.apply_delete(group_id, message_id, session.user_id)

    def apply_delete(self, group_id: str, message_id: str, user_id: str) -> Message:
        """Delete a message on behalf of ``user_id`` and broadcast the result.

        Shared by the websocket and HTTP paths. A pin on the message is
        removed with it and the updated pin list is broadcast.
        """
        was_pinned = self.pins.is_pinned(group_id, message_id)
        message = self.messages.delete(group_id, message_id, user_id)
        self.broadcast.to_group(
            group_id, events.message_deleted_event(group_id, message_id, user_id)
        )
        if was_pinned:
            self.broadcast.to_group(
                group_id, events.pinned_update_event(group_id, self.pins.active_pins(group_id))
            )
        return message

    async def react(self, connection_id: str, group_id: str, message_id: str, emoji: str) -> Dict[str, List[str]]:
        session = self._require_session(connection_id)
        reactions = self.messages.toggle_reaction(group_id, message_id, session.user_id, emoji)
        self.broadcast.to_group(
            group_id, events.reaction_update_event(group_id, message_id, reactions)
        )
        return reactions

    async def mark_seen(self, connection_id: str, group_id: str, message_id: str) -> List[str]:
        session = self._require_session(connection_id)
        seen_by, changed = self.messages.mark_seen(group_id, message_id, session.user_id)
        if changed:
            self.broadcast.to_group(
                group_id, events.seen_update_event(group_id, message_id, seen_by)
            )
        return seen_by

    async def set_typing(self, connection_id: str, group_id: str, is_typing: bool) -> None:
        session = self._require_session(connection_id)
        self._require_member(group_id, session.user_id)
        user_id = session.user_id
        if not is_typing:
            self._clear_typing(group_id, user_id, exclude=connection_id)
            return
        typing_set = self.typing.setdefault(group_id, set())
        if user_id in typing_set:
            return
        typing_set.add(user_id)
        self.broadcast.to_group(
            group_id,
            events.user_typing_event(user_id, group_id, is_typing),
            exclude=connection_id,
        )

    # =========================================================================
    # Pins
    # =========================================================================

    async def pin_message(
        self,
        connection_id: str,
        group_id: str,
        message_id: str,
        duration_days: Optional[float] = None,
    ) -> PinnedEntry:
        session = self._require_session(connection_id)
        return self.apply_pin(group_id, message_id, session.user_id, duration_days)

    def apply_pin(
        self,
        group_id: str,
        message_id: str,
        user_id: str,
        duration_days: Optional[float] = None,
    ) -> PinnedEntry:
        entry = self.pins.pin(group_id, message_id, user_id, duration_days)
        self.broadcast.to_group(
            group_id, events.pinned_update_event(group_id, self.pins.active_pins(group_id))
        )
        return entry

    async def unpin_message(self, connection_id: str, group_id: str, message_id: str) -> List[PinnedEntry]:
        session = self._require_session(connection_id)
        return self.apply_unpin(group_id, message_id, session.user_id)

    def apply_unpin(self, group_id: str, message_id: str, user_id: str) -> List[PinnedEntry]:
        remaining = self.pins.unpin(group_id, message_id, user_id)
        self.broadcast.to_group(group_id, events.pinned_update_event(group_id, remaining))
        return remaining

    def sweep_pins(self, now: Optional[float] = None) -> Dict[str, List[PinnedEntry]]:
        """Expire pins and broadcast the new pin list for every changed group."""
        changed = self.pins.sweep_expired(now)
        for group_id, pins in changed.items():
            self.broadcast.to_group(group_id, events.pinned_update_event(group_id, pins))
        return changed

    async def run_pin_sweeper(self, interval_seconds: float) -> None:
        """Periodically expire pins until cancelled."""
        logger.info("[Hub] Pin sweeper started (interval=%ss)", interval_seconds)
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.sweep_pins()
            except Exception:
                logger.exception("[Hub] Pin sweep failed")

    # =========================================================================
    # Event dispatch
    # =========================================================================

    async def handle_event(self, connection_id: str, data: dict) -> None:
        """Validate and dispatch one inbound frame.

        Failures are reported to the originating connection only.
        """
        try:
            event = events.parse_event(data)
            await self._dispatch(connection_id, event)
        except ChatError as e:
            logger.info(
                "[Hub] Rejected %s from %s: %s (%s)",
                data.get("type", "?") if isinstance(data, dict) else "?",
                connection_id, e.code, e.message,
            )
            self.broadcast.to_connection(connection_id, e.to_event())
        except Exception:
            logger.exception("[Hub] Unexpected error handling event from %s", connection_id)
            self.broadcast.to_connection(connection_id, InternalError().to_event())

    async def _dispatch(self, connection_id: str, event: events.InboundEvent) -> None:
        if isinstance(event, events.AuthenticateEvent):
            await self.authenticate(connection_id, event.token)
            return

        if isinstance(event, events.JoinGroupEvent):
            await self.join_group(connection_id, event.groupId)
        elif isinstance(event, events.LeaveGroupEvent):
            await self.leave_group(connection_id, event.groupId)
        elif isinstance(event, events.NewMessageEvent):
            await self.send_message(
                connection_id, event.groupId, event.content, event.kind, event.replyToId
            )
        elif isinstance(event, events.ToggleReactionEvent):
            await self.react(connection_id, event.groupId, event.messageId, event.emoji)
        elif isinstance(event, events.MarkSeenEvent):
            await self.mark_seen(connection_id, event.groupId, event.messageId)
        elif isinstance(event, events.TypingEvent):
            await self.set_typing(connection_id, event.groupId, event.isTyping)
        elif isinstance(event, events.DeleteMessageEvent):
            await self.delete_message(connection_id, event.groupId, event.messageId)
        elif isinstance(event, events.PinMessageEvent):
            await self.pin_message(connection_id, event.groupId, event.messageId, event.durationDays)
        elif isinstance(event, events.UnpinMessageEvent):
            await self.unpin_message(connection_id, event.groupId, event.messageId)
        elif isinstance(event, events.EditMessageEvent):
            await self.edit_message(connection_id, event.groupId, event.messageId, event.content)

    async def close(self) -> None:
        await self.broadcast.close()


# =============================================================================
# Construction
# =============================================================================


def build_hub(config: AppConfig) -> SessionHub:
    """Wire up stores, token service and hub from configuration.

    Bootstrap users and the default group are created here.
    """
    identity = IdentityStore()
    groups = GroupRegistry(identity, default_max_members=config.groups.default_max_members)
    messages = MessageLog(
        groups,
        max_history=config.chat.max_history,
        max_message_length=config.chat.max_message_length,
        max_emoji_length=config.chat.max_emoji_length,
        max_page_size=config.chat.max_page_size,
    )
    pins = PinManager(
        messages,
        groups,
        default_duration_days=config.pins.default_duration_days,
        max_duration_days=config.pins.max_duration_days,
    )
    tokens = TokenService(
        secret_key=config.secrets.jwt.secret_key,
        algorithm=config.secrets.jwt.algorithm,
        expire_minutes=config.auth.token_expire_minutes,
    )
    sessions = SessionRegistry()
    broadcast = BroadcastRouter(
        sessions,
        send_timeout=config.chat.send_timeout_seconds,
        outbox_size=config.chat.outbox_size,
    )

    users = identity.bootstrap(config.secrets.bootstrap_users)
    default_group = config.groups.default_group
    if default_group.enabled:
        groups.ensure_default_group(
            default_group.id,
            default_group.name,
            default_group.description,
            identity.list_users(),
        )
    logger.info("[Hub] Built hub (%d bootstrap user(s))", len(users))

    return SessionHub(
        identity=identity,
        groups=groups,
        messages=messages,
        pins=pins,
        tokens=tokens,
        sessions=sessions,
        broadcast=broadcast,
        join_history_limit=config.chat.join_history_limit,
    )


_hub: Optional[SessionHub] = None


def get_hub() -> SessionHub:
    """Return the process-wide hub, building it from config on first use."""
    global _hub
    if _hub is None:
        _hub = build_hub(get_config())
    return _hub


def set_hub(hub: Optional[SessionHub]) -> None:
    """Install (or clear, with None) the process-wide hub."""
    global _hub
    _hub = hub
