"""Tests for the /ws/chat protocol and the chat HTTP endpoints.

Each websocket authenticates with a token issued by the fixture token
service, so HTTP and websocket traffic share one hub.
"""
from groupchat.chat.pins import SECONDS_PER_DAY


def authenticate(ws, token):
    ws.send_json({"type": "authenticate", "token": token})
    authenticated = ws.receive_json()
    assert authenticated["type"] == "authenticated"
    presence = ws.receive_json()
    assert presence["type"] == "onlineUsers"
    return authenticated


def receive_until(ws, event_type):
    """Skip unrelated events (e.g. presence updates) until ``event_type``."""
    while True:
        event = ws.receive_json()
        if event["type"] == event_type:
            return event


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_auth_required_before_authenticate(client):
    with client.websocket_connect("/ws/chat") as ws:
        ws.send_json({"type": "newMessage", "groupId": "general", "content": "hi"})
        error = ws.receive_json()
        assert error == {"type": "error", "code": "AUTH_REQUIRED", "error": "Authentication required"}


def test_bad_token_then_good_token(client, token_for):
    with client.websocket_connect("/ws/chat") as ws:
        ws.send_json({"type": "authenticate", "token": "garbage"})
        assert ws.receive_json()["code"] == "INVALID_CREDENTIAL"

        authenticated = authenticate(ws, token_for("bob"))
        assert authenticated["userId"] == "bob"
        assert authenticated["groups"] == ["general"]


def test_token_query_parameter(client, token_for):
    with client.websocket_connect(f"/ws/chat?token={token_for('alice')}") as ws:
        assert ws.receive_json()["type"] == "authenticated"
        assert ws.receive_json() == {"type": "onlineUsers", "users": ["alice"]}


def test_invalid_json_frame(client, token_for):
    with client.websocket_connect("/ws/chat") as ws:
        authenticate(ws, token_for("bob"))
        ws.send_text("{not json")
        error = ws.receive_json()
        assert error["code"] == "MALFORMED"

        # The connection survives
        ws.send_json({"type": "joinGroup", "groupId": "general"})
        assert ws.receive_json()["type"] == "groupHistory"


def test_binary_frame_is_malformed(client, token_for):
    with client.websocket_connect("/ws/chat") as ws:
        authenticate(ws, token_for("bob"))
        ws.send_bytes(b"\x00\x01")
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["code"] == "MALFORMED"

        ws.send_json({"type": "joinGroup", "groupId": "general"})
        assert ws.receive_json()["type"] == "groupHistory"


def test_two_users_chat_with_reactions_and_receipts(client, token_for):
    with client.websocket_connect("/ws/chat") as alice_ws:
        authenticate(alice_ws, token_for("alice"))
        with client.websocket_connect("/ws/chat") as bob_ws:
            authenticate(bob_ws, token_for("bob"))

            alice_ws.send_json({"type": "newMessage", "groupId": "general", "content": "Hi"})
            sent = receive_until(alice_ws, "messageReceived")
            received = receive_until(bob_ws, "messageReceived")
            assert sent["id"] == received["id"]
            assert received["body"] == "Hi"
            assert received["seenBy"] == ["alice"]

            bob_ws.send_json({"type": "markSeen", "groupId": "general", "messageId": sent["id"]})
            seen = receive_until(alice_ws, "seenUpdate")
            assert seen["seenBy"] == ["alice", "bob"]

            bob_ws.send_json({
                "type": "toggleReaction",
                "groupId": "general",
                "messageId": sent["id"],
                "emoji": "❤️",
            })
            update = receive_until(alice_ws, "reactionUpdate")
            assert update["reactions"] == {"❤️": ["bob"]}

            bob_ws.send_json({
                "type": "newMessage",
                "groupId": "general",
                "content": "Hello back",
                "replyToId": sent["id"],
            })
            reply = receive_until(alice_ws, "messageReceived")
            assert reply["replyToId"] == sent["id"]

        presence = receive_until(alice_ws, "onlineUsers")
        assert presence["users"] == ["alice"]


def test_join_group_history(client, token_for, messages, clock):
    for i in range(3):
        clock.advance(1)
        messages.append("general", "alice", f"old {i}")

    with client.websocket_connect("/ws/chat") as ws:
        authenticate(ws, token_for("bob"))
        ws.send_json({"type": "joinGroup", "groupId": "general"})
        history = ws.receive_json()
        assert history["type"] == "groupHistory"
        assert [m["body"] for m in history["messages"]] == ["old 0", "old 1", "old 2"]
        assert history["pinnedEntries"] == []


def test_non_member_is_rejected(client, token_for):
    with client.websocket_connect("/ws/chat") as ws:
        authenticate(ws, token_for("carol"))
        ws.send_json({"type": "newMessage", "groupId": "general", "content": "hi"})
        assert ws.receive_json()["code"] == "NOT_A_MEMBER"


def test_http_delete_reaches_websocket_subscribers(client, token_for, auth_headers, messages, pins):
    message = messages.append("general", "bob", "pinned and doomed")
    pins.pin("general", message.id, "alice")

    with client.websocket_connect("/ws/chat") as ws:
        authenticate(ws, token_for("bob"))
        response = client.delete(
            f"/groups/general/messages/{message.id}", headers=auth_headers("alice")
        )
        assert response.status_code == 200

        deleted = ws.receive_json()
        assert deleted == {
            "type": "messageDeleted",
            "groupId": "general",
            "messageId": message.id,
            "deletedBy": "alice",
        }
        assert ws.receive_json() == {"type": "pinnedUpdate", "groupId": "general", "pins": []}


def test_http_pin_and_unpin(client, token_for, auth_headers, messages):
    message = messages.append("general", "bob", "important")

    denied = client.post(
        f"/groups/general/messages/{message.id}/pin", json={}, headers=auth_headers("bob")
    )
    assert denied.status_code == 403

    with client.websocket_connect("/ws/chat") as ws:
        authenticate(ws, token_for("bob"))
        response = client.post(
            f"/groups/general/messages/{message.id}/pin",
            json={"durationDays": 7},
            headers=auth_headers("alice"),
        )
        assert response.status_code == 200
        entry = response.json()
        assert entry["expiresAt"] - entry["pinnedAt"] == 7 * SECONDS_PER_DAY
        update = ws.receive_json()
        assert [p["messageId"] for p in update["pins"]] == [message.id]

        pins_response = client.get("/groups/general/pins", headers=auth_headers("bob"))
        assert [p["messageId"] for p in pins_response.json()["pins"]] == [message.id]

        unpinned = client.delete(
            f"/groups/general/messages/{message.id}/pin", headers=auth_headers("alice")
        )
        assert unpinned.json()["pins"] == []
        assert ws.receive_json()["pins"] == []


def test_http_pin_rejects_long_duration(client, auth_headers, messages):
    message = messages.append("general", "bob", "important")
    response = client.post(
        f"/groups/general/messages/{message.id}/pin",
        json={"durationDays": 90},
        headers=auth_headers("alice"),
    )
    assert response.status_code == 422
    assert response.json()["code"] == "MALFORMED"


def test_http_edit(client, auth_headers, messages):
    message = messages.append("general", "bob", "typo")
    denied = client.patch(
        f"/groups/general/messages/{message.id}", json={"content": "x"}, headers=auth_headers("alice")
    )
    assert denied.status_code == 403

    response = client.patch(
        f"/groups/general/messages/{message.id}", json={"content": "fixed"}, headers=auth_headers("bob")
    )
    assert response.status_code == 200
    assert response.json()["body"] == "fixed"


def test_message_history_pagination(client, auth_headers, messages, clock):
    sent = []
    for i in range(5):
        clock.advance(1)
        sent.append(messages.append("general", "bob", f"m{i}"))

    first_page = client.get("/groups/general/messages?limit=2", headers=auth_headers("alice"))
    body = first_page.json()
    assert [m["body"] for m in body["messages"]] == ["m3", "m4"]
    assert body["hasMore"] is True

    cursor = body["messages"][0]["createdAt"]
    older = client.get(
        f"/groups/general/messages?limit=10&before={cursor}", headers=auth_headers("alice")
    ).json()
    assert [m["body"] for m in older["messages"]] == ["m0", "m1", "m2"]
    assert older["hasMore"] is False

    outsider = client.get("/groups/general/messages", headers=auth_headers("carol"))
    assert outsider.status_code == 403


def test_message_history_pagination_with_shared_timestamps(client, auth_headers, messages):
    sent = [messages.append("general", "bob", f"m{i}") for i in range(5)]

    first_page = client.get("/groups/general/messages?limit=2", headers=auth_headers("alice")).json()
    assert [m["body"] for m in first_page["messages"]] == ["m3", "m4"]
    assert first_page["hasMore"] is True

    cursor = first_page["messages"][0]["id"]
    older = client.get(
        f"/groups/general/messages?limit=10&beforeId={cursor}", headers=auth_headers("alice")
    ).json()
    assert [m["id"] for m in older["messages"]] == [m.id for m in sent[:3]]
    assert older["hasMore"] is False

    missing = client.get("/groups/general/messages?beforeId=nope", headers=auth_headers("alice"))
    assert missing.status_code == 404


def test_added_member_receives_group_events(client, token_for, auth_headers):
    with client.websocket_connect("/ws/chat") as carol_ws:
        authenticated = authenticate(carol_ws, token_for("carol"))
        assert authenticated["groups"] == []

        response = client.post(
            "/groups/general/members", json={"userId": "carol"}, headers=auth_headers("alice")
        )
        assert response.status_code == 200
        added = carol_ws.receive_json()
        assert added["type"] == "addedToGroup"
        assert added["group"]["id"] == "general"

        with client.websocket_connect("/ws/chat") as bob_ws:
            authenticate(bob_ws, token_for("bob"))
            bob_ws.send_json({"type": "newMessage", "groupId": "general", "content": "welcome"})
            assert receive_until(carol_ws, "messageReceived")["body"] == "welcome"


def test_presence_endpoint(client, token_for, auth_headers):
    with client.websocket_connect("/ws/chat") as ws:
        authenticate(ws, token_for("bob"))
        response = client.get("/presence", headers=auth_headers("alice"))
        assert response.json() == {"users": ["bob"]}
