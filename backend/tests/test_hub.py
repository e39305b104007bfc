"""Tests for the session hub: authentication, presence and event fan-out."""
import pytest

from groupchat.chat.pins import SECONDS_PER_DAY


class Recorder:
    """Transport that keeps every event it is handed."""

    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)

    def types(self):
        return [e["type"] for e in self.events]

    def of_type(self, event_type):
        return [e for e in self.events if e["type"] == event_type]

    def clear(self):
        self.events.clear()


async def connect(hub, token_for, username, connection_id=None):
    recorder = Recorder()
    connection_id = connection_id or f"conn-{username}"
    hub.connect(connection_id, recorder)
    await hub.handle_event(connection_id, {"type": "authenticate", "token": token_for(username)})
    await hub.broadcast.drain()
    return recorder


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_authenticate_then_presence(self, hub, token_for):
        alice = await connect(hub, token_for, "alice")
        assert alice.types() == ["authenticated", "onlineUsers"]
        assert alice.events[0]["userId"] == "alice"
        assert alice.events[0]["role"] == "admin"
        assert alice.events[0]["groups"] == ["general"]
        assert alice.events[1]["users"] == ["alice"]

        bob = await connect(hub, token_for, "bob")
        assert bob.of_type("onlineUsers")[-1]["users"] == ["alice", "bob"]
        assert alice.of_type("onlineUsers")[-1]["users"] == ["alice", "bob"]
        await hub.close()

    @pytest.mark.asyncio
    async def test_events_before_auth_are_rejected(self, hub):
        recorder = Recorder()
        hub.connect("c1", recorder)
        await hub.handle_event("c1", {"type": "joinGroup", "groupId": "general"})
        await hub.broadcast.drain()
        assert recorder.events == [
            {"type": "error", "code": "AUTH_REQUIRED", "error": "Authentication required"}
        ]
        await hub.close()

    @pytest.mark.asyncio
    async def test_invalid_token_keeps_connection_unauthenticated(self, hub):
        recorder = Recorder()
        hub.connect("c1", recorder)
        await hub.handle_event("c1", {"type": "authenticate", "token": "forged"})
        await hub.broadcast.drain()
        assert recorder.events[0]["code"] == "INVALID_CREDENTIAL"
        assert not hub.sessions.get("c1").is_authenticated
        assert hub.online_users() == []
        await hub.close()

    @pytest.mark.asyncio
    async def test_second_authenticate_is_malformed(self, hub, token_for):
        alice = await connect(hub, token_for, "alice")
        alice.clear()
        await hub.handle_event("conn-alice", {"type": "authenticate", "token": token_for("bob")})
        await hub.broadcast.drain()
        assert alice.events[0]["code"] == "MALFORMED"
        assert hub.sessions.get("conn-alice").user_id == "alice"
        await hub.close()

    @pytest.mark.asyncio
    async def test_malformed_frames(self, hub, token_for):
        alice = await connect(hub, token_for, "alice")
        alice.clear()
        await hub.handle_event("conn-alice", {"type": "bogus"})
        await hub.handle_event("conn-alice", {"type": "newMessage"})
        await hub.handle_event("conn-alice", ["not", "an", "object"])
        await hub.broadcast.drain()
        assert [e["code"] for e in alice.events] == ["MALFORMED"] * 3
        await hub.close()


class TestPresence:
    @pytest.mark.asyncio
    async def test_user_stays_online_until_last_session_closes(self, hub, token_for):
        alice = await connect(hub, token_for, "alice")
        await connect(hub, token_for, "bob", "bob-laptop")
        await connect(hub, token_for, "bob", "bob-phone")
        alice.clear()

        await hub.disconnect("bob-laptop")
        await hub.broadcast.drain()
        assert hub.online_users() == ["alice", "bob"]
        assert alice.of_type("onlineUsers") == []

        await hub.disconnect("bob-phone")
        await hub.broadcast.drain()
        assert hub.online_users() == ["alice"]
        assert alice.of_type("onlineUsers")[-1]["users"] == ["alice"]
        await hub.close()

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, hub, token_for):
        await connect(hub, token_for, "alice")
        await hub.disconnect("conn-alice")
        await hub.disconnect("conn-alice")
        await hub.disconnect("never-connected")
        assert hub.online_users() == []
        assert hub.identity.lookup("alice").lastSeenAt is not None
        await hub.close()


class TestGroupEvents:
    @pytest.mark.asyncio
    async def test_join_replays_history_to_joiner_only(self, hub, token_for, messages, pins):
        first = messages.append("general", "alice", "hello")
        pins.pin("general", first.id, "alice")

        alice = await connect(hub, token_for, "alice")
        bob = await connect(hub, token_for, "bob")
        alice.clear()
        bob.clear()

        await hub.handle_event("conn-bob", {"type": "joinGroup", "groupId": "general"})
        await hub.broadcast.drain()

        assert bob.types() == ["groupHistory"]
        history = bob.events[0]
        assert [m["id"] for m in history["messages"]] == [first.id]
        assert [p["messageId"] for p in history["pinnedEntries"]] == [first.id]
        assert alice.events == []
        await hub.close()

    @pytest.mark.asyncio
    async def test_non_member_cannot_join_or_send(self, hub, token_for):
        carol = await connect(hub, token_for, "carol")
        alice = await connect(hub, token_for, "alice")
        carol.clear()
        alice.clear()

        await hub.handle_event("conn-carol", {"type": "joinGroup", "groupId": "general"})
        await hub.handle_event(
            "conn-carol", {"type": "newMessage", "groupId": "general", "content": "let me in"}
        )
        await hub.broadcast.drain()

        assert [e["code"] for e in carol.events] == ["NOT_A_MEMBER", "NOT_A_MEMBER"]
        assert alice.events == []
        await hub.close()

    @pytest.mark.asyncio
    async def test_send_react_and_seen(self, hub, token_for):
        alice = await connect(hub, token_for, "alice")
        bob = await connect(hub, token_for, "bob")
        alice.clear()
        bob.clear()

        await hub.handle_event("conn-alice", {"type": "newMessage", "groupId": "general", "content": "Hi"})
        await hub.broadcast.drain()
        received = bob.of_type("messageReceived")
        assert len(received) == 1
        assert received[0]["authorId"] == "alice"
        assert received[0]["seenBy"] == ["alice"]
        message_id = received[0]["id"]
        assert alice.of_type("messageReceived")[0]["id"] == message_id

        await hub.handle_event("conn-bob", {"type": "markSeen", "groupId": "general", "messageId": message_id})
        await hub.handle_event("conn-bob", {"type": "markSeen", "groupId": "general", "messageId": message_id})
        await hub.broadcast.drain()
        seen_updates = alice.of_type("seenUpdate")
        assert len(seen_updates) == 1
        assert seen_updates[0]["seenBy"] == ["alice", "bob"]

        await hub.handle_event(
            "conn-bob",
            {"type": "toggleReaction", "groupId": "general", "messageId": message_id, "emoji": "👍"},
        )
        await hub.broadcast.drain()
        assert alice.of_type("reactionUpdate")[-1]["reactions"] == {"👍": ["bob"]}
        await hub.close()

    @pytest.mark.asyncio
    async def test_typing_excludes_sender_and_clears_on_send(self, hub, token_for):
        alice = await connect(hub, token_for, "alice")
        bob = await connect(hub, token_for, "bob")
        alice.clear()
        bob.clear()

        await hub.handle_event("conn-bob", {"type": "typing", "groupId": "general", "isTyping": True})
        await hub.broadcast.drain()
        assert alice.of_type("userTyping") == [
            {"type": "userTyping", "userId": "bob", "groupId": "general", "isTyping": True}
        ]
        assert bob.events == []

        await hub.handle_event("conn-bob", {"type": "newMessage", "groupId": "general", "content": "done"})
        await hub.broadcast.drain()
        assert alice.types()[-2:] == ["userTyping", "messageReceived"]
        assert alice.events[-2]["isTyping"] is False
        assert "userTyping" not in bob.types()
        assert hub.typing == {}
        await hub.close()

    @pytest.mark.asyncio
    async def test_disconnect_clears_typing(self, hub, token_for):
        alice = await connect(hub, token_for, "alice")
        await connect(hub, token_for, "bob")
        await hub.handle_event("conn-bob", {"type": "typing", "groupId": "general", "isTyping": True})
        alice.clear()

        await hub.disconnect("conn-bob")
        await hub.broadcast.drain()
        assert alice.types() == ["userTyping", "onlineUsers"]
        assert alice.events[0]["isTyping"] is False
        await hub.close()

    @pytest.mark.asyncio
    async def test_typing_only_broadcasts_changes(self, hub, token_for):
        alice = await connect(hub, token_for, "alice")
        await connect(hub, token_for, "bob")
        alice.clear()

        stop = {"type": "typing", "groupId": "general", "isTyping": False}
        start = {"type": "typing", "groupId": "general", "isTyping": True}
        await hub.handle_event("conn-bob", stop)
        await hub.handle_event("conn-bob", start)
        await hub.handle_event("conn-bob", start)
        await hub.handle_event("conn-bob", stop)
        await hub.handle_event("conn-bob", stop)
        await hub.broadcast.drain()

        assert [e["isTyping"] for e in alice.of_type("userTyping")] == [True, False]
        assert hub.typing == {}
        await hub.close()

    @pytest.mark.asyncio
    async def test_edit_message(self, hub, token_for, messages):
        message = messages.append("general", "bob", "helo")
        alice = await connect(hub, token_for, "alice")
        bob = await connect(hub, token_for, "bob")
        alice.clear()
        bob.clear()

        await hub.handle_event(
            "conn-alice",
            {"type": "editMessage", "groupId": "general", "messageId": message.id, "content": "nope"},
        )
        await hub.handle_event(
            "conn-bob",
            {"type": "editMessage", "groupId": "general", "messageId": message.id, "content": "hello"},
        )
        await hub.broadcast.drain()
        assert alice.of_type("error")[0]["code"] == "PERMISSION_DENIED"
        edited = alice.of_type("messageEdited")
        assert edited[0]["body"] == "hello"
        assert edited[0]["editedAt"] is not None
        await hub.close()


class TestDeleteAndPins:
    @pytest.mark.asyncio
    async def test_deleting_pinned_message_broadcasts_both(self, hub, token_for, messages):
        message = messages.append("general", "bob", "pin me")
        alice = await connect(hub, token_for, "alice")
        bob = await connect(hub, token_for, "bob")

        await hub.handle_event(
            "conn-alice", {"type": "pinMessage", "groupId": "general", "messageId": message.id}
        )
        await hub.broadcast.drain()
        assert [p["messageId"] for p in bob.of_type("pinnedUpdate")[-1]["pins"]] == [message.id]
        bob.clear()

        await hub.handle_event(
            "conn-alice", {"type": "deleteMessage", "groupId": "general", "messageId": message.id}
        )
        await hub.broadcast.drain()
        assert bob.types() == ["messageDeleted", "pinnedUpdate"]
        assert bob.events[0] == {
            "type": "messageDeleted",
            "groupId": "general",
            "messageId": message.id,
            "deletedBy": "alice",
        }
        assert bob.events[1]["pins"] == []
        assert alice.types()[-2:] == ["messageDeleted", "pinnedUpdate"]
        await hub.close()

    @pytest.mark.asyncio
    async def test_member_cannot_pin_or_delete_others(self, hub, token_for, messages):
        message = messages.append("general", "alice", "mine")
        bob = await connect(hub, token_for, "bob")
        bob.clear()

        await hub.handle_event(
            "conn-bob", {"type": "pinMessage", "groupId": "general", "messageId": message.id}
        )
        await hub.handle_event(
            "conn-bob", {"type": "deleteMessage", "groupId": "general", "messageId": message.id}
        )
        await hub.broadcast.drain()
        assert [e["code"] for e in bob.events] == ["PERMISSION_DENIED", "PERMISSION_DENIED"]
        assert messages.count("general") == 1
        await hub.close()

    @pytest.mark.asyncio
    async def test_unpin_and_sweep(self, hub, token_for, messages, pins, clock):
        first = messages.append("general", "bob", "one")
        second = messages.append("general", "bob", "two")
        alice = await connect(hub, token_for, "alice")

        await hub.handle_event(
            "conn-alice",
            {"type": "pinMessage", "groupId": "general", "messageId": first.id, "durationDays": 1},
        )
        await hub.handle_event(
            "conn-alice",
            {"type": "pinMessage", "groupId": "general", "messageId": second.id, "durationDays": 2},
        )
        await hub.handle_event(
            "conn-alice", {"type": "unpinMessage", "groupId": "general", "messageId": first.id}
        )
        await hub.broadcast.drain()
        assert [p["messageId"] for p in alice.of_type("pinnedUpdate")[-1]["pins"]] == [second.id]
        alice.clear()

        clock.advance(2 * SECONDS_PER_DAY)
        changed = hub.sweep_pins()
        await hub.broadcast.drain()
        assert list(changed) == ["general"]
        assert alice.events == [{"type": "pinnedUpdate", "groupId": "general", "pins": []}]
        await hub.close()


class TestMembership:
    @pytest.mark.asyncio
    async def test_member_added_subscribes_live_sessions(self, hub, token_for, identity, groups):
        carol = await connect(hub, token_for, "carol")
        alice = await connect(hub, token_for, "alice")
        carol.clear()

        groups.add_member("general", "carol", identity.lookup("alice"))
        assert hub.member_added("general", "carol") == 1
        await hub.broadcast.drain()
        assert carol.types() == ["addedToGroup"]
        assert carol.events[0]["group"]["id"] == "general"

        await hub.handle_event("conn-alice", {"type": "newMessage", "groupId": "general", "content": "welcome"})
        await hub.broadcast.drain()
        assert carol.of_type("messageReceived")[0]["body"] == "welcome"
        await hub.close()


@pytest.mark.asyncio
async def test_unexpected_error_reported_as_internal(hub, token_for, monkeypatch):
    alice = await connect(hub, token_for, "alice")
    alice.clear()

    def explode(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(hub.messages, "append", explode)
    await hub.handle_event("conn-alice", {"type": "newMessage", "groupId": "general", "content": "hi"})
    await hub.broadcast.drain()
    assert alice.events == [{"type": "error", "code": "INTERNAL_ERROR", "error": "Internal server error"}]
    assert hub.sessions.get("conn-alice").is_authenticated
    await hub.close()
