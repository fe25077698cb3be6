"""End-to-end tests for the WebSocket chat endpoint.

Protocol recap:
1. On connect the server sends {type: "welcome", userId, roomId, username, message}
2. Everyone already in the room receives {type: "user_joined", ...}
3. A joiner gets {type: "recent_messages", messages} when the room has history
4. Chat lines are echoed to every member, sender included
"""
import pytest
from starlette.websockets import WebSocketDisconnect

from talkeos.config import AppConfig, get_config
from talkeos.main import app


def receive_welcome(ws, room_id, username):
    """Helper to receive and validate the welcome event."""
    welcome = ws.receive_json()
    assert welcome["type"] == "welcome"
    assert welcome["roomId"] == room_id
    assert welcome["username"] == username
    assert welcome["message"] == f"Welcome to room {room_id}, {username}!"
    return welcome


def send_chat(ws, text):
    ws.send_json({"type": "chat_message", "text": text})


def test_two_clients_join_chat_and_leave(client, chat_service, wait_until):
    """Alice and Bob in r1: join notices, echoed chat, departure, cleanup."""
    with client.websocket_connect("/ws?room=r1&username=alice") as alice:
        welcome_a = receive_welcome(alice, "r1", "alice")

        with client.websocket_connect("/ws?room=r1&username=bob") as bob:
            welcome_b = receive_welcome(bob, "r1", "bob")
            assert welcome_b["userId"] != welcome_a["userId"]

            joined = alice.receive_json()
            assert joined["type"] == "user_joined"
            assert joined["username"] == "bob"
            assert joined["userId"] == welcome_b["userId"]
            assert joined["message"] == "bob joined the chat"

            send_chat(alice, "hi")
            echo = alice.receive_json()
            relayed = bob.receive_json()
            assert echo == relayed
            assert relayed["type"] == "chat_message"
            assert relayed["username"] == "alice"
            assert relayed["userId"] == welcome_a["userId"]
            assert relayed["text"] == "hi"
            assert isinstance(relayed["timestamp"], int)

        left = alice.receive_json()
        assert left["type"] == "user_left"
        assert left["username"] == "bob"
        assert left["message"] == "bob left the chat"
        assert "r1" in chat_service.registry

    assert wait_until(lambda: "r1" not in chat_service.registry)


def test_joiner_receives_recent_messages(client):
    with client.websocket_connect("/ws?room=history&username=alice") as alice:
        receive_welcome(alice, "history", "alice")
        for i in range(3):
            send_chat(alice, f"message {i}")
            alice.receive_json()

        with client.websocket_connect("/ws?room=history&username=bob") as bob:
            receive_welcome(bob, "history", "bob")
            recent = bob.receive_json()
            assert recent["type"] == "recent_messages"
            assert [m["text"] for m in recent["messages"]] == ["message 0", "message 1", "message 2"]
            assert all(m["username"] == "alice" for m in recent["messages"])


def test_typing_start_and_stop_reach_others_only(client):
    with client.websocket_connect("/ws?room=typing&username=alice") as alice, \
         client.websocket_connect("/ws?room=typing&username=bob") as bob:
        receive_welcome(alice, "typing", "alice")
        receive_welcome(bob, "typing", "bob")
        assert alice.receive_json()["type"] == "user_joined"

        bob.send_json({"type": "typing_start"})
        start = alice.receive_json()
        assert start["type"] == "typing_start"
        assert start["username"] == "bob"

        bob.send_json({"type": "typing_stop"})
        stop = alice.receive_json()
        assert stop["type"] == "typing_stop"
        assert stop["username"] == "bob"

        # Bob never hears about his own typing; his next event is the chat echo.
        send_chat(bob, "done")
        assert bob.receive_json()["type"] == "chat_message"
        assert alice.receive_json()["type"] == "chat_message"


def test_typing_auto_stops_after_timeout(client):
    with client.websocket_connect("/ws?room=idle&username=alice") as alice, \
         client.websocket_connect("/ws?room=idle&username=bob") as bob:
        receive_welcome(alice, "idle", "alice")
        receive_welcome(bob, "idle", "bob")
        alice.receive_json()

        bob.send_json({"type": "typing_start"})
        assert alice.receive_json()["type"] == "typing_start"
        # No explicit stop: the countdown sends it.
        stop = alice.receive_json()
        assert stop["type"] == "typing_stop"
        assert stop["username"] == "bob"


def test_malformed_message_keeps_connection_open(client):
    with client.websocket_connect("/ws?room=bad&username=alice") as ws:
        receive_welcome(ws, "bad", "alice")

        ws.send_text("this is not json")
        ws.send_json({"type": "unknown_thing"})
        ws.send_json({"type": "chat_message"})
        send_chat(ws, "still alive")

        msg = ws.receive_json()
        assert msg["type"] == "chat_message"
        assert msg["text"] == "still alive"


def test_binary_frames_are_decoded(client):
    with client.websocket_connect("/ws?room=bin&username=alice") as ws:
        receive_welcome(ws, "bin", "alice")
        ws.send_bytes(b'{"type": "chat_message", "text": "bytes"}')
        assert ws.receive_json()["text"] == "bytes"


def test_different_rooms_are_isolated(client):
    with client.websocket_connect("/ws?room=a&username=alice") as alice, \
         client.websocket_connect("/ws?room=b&username=bob") as bob:
        receive_welcome(alice, "a", "alice")
        receive_welcome(bob, "b", "bob")

        send_chat(alice, "only in a")
        assert alice.receive_json()["text"] == "only in a"

        send_chat(bob, "only in b")
        # Bob's first event after the welcome is his own line, not Alice's.
        assert bob.receive_json()["text"] == "only in b"


def test_root_path_and_defaults(client):
    with client.websocket_connect("/") as ws:
        welcome = receive_welcome(ws, "default", "Anonymous")
        assert len(welcome["userId"]) == 9


def test_empty_query_values_use_defaults(client):
    with client.websocket_connect("/ws?room=&username=") as ws:
        receive_welcome(ws, "default", "Anonymous")


@pytest.mark.parametrize("query", [
    "room=" + "x" * 51 + "&username=alice",
    "room=r1&username=" + "y" * 21,
])
def test_overlong_names_rejected_with_policy_violation(client, chat_service, query):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect(f"/ws?{query}"):
            pass
    assert exc_info.value.code == 1008
    assert len(chat_service.registry) == 0


def test_full_room_rejects_extra_participant(client):
    app.dependency_overrides[get_config] = lambda: AppConfig(
        server={"security": {"max_participants": 1}}
    )
    try:
        with client.websocket_connect("/ws?room=tiny&username=alice") as alice:
            receive_welcome(alice, "tiny", "alice")
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/ws?room=tiny&username=bob"):
                    pass
            assert exc_info.value.code == 1008
    finally:
        app.dependency_overrides.pop(get_config, None)


def test_room_filled_after_accept_closes_with_policy_violation(client, chat_service):
    """The capacity check at join time also refuses an accepted socket."""
    chat_service.max_participants = 1
    with client.websocket_connect("/ws?room=seat&username=alice") as alice:
        receive_welcome(alice, "seat", "alice")
        with client.websocket_connect("/ws?room=seat&username=bob") as bob:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                bob.receive_json()
            assert exc_info.value.code == 1008
        assert len(chat_service.registry.get("seat")) == 1


def test_history_endpoint_reflects_live_room(client):
    with client.websocket_connect("/ws?room=live&username=alice") as ws:
        receive_welcome(ws, "live", "alice")
        for text in ("one", "two", "three"):
            send_chat(ws, text)
            ws.receive_json()

        response = client.get("/chat/live/history?limit=2")
        assert response.status_code == 200
        body = response.json()
        assert body["roomId"] == "live"
        assert [m["text"] for m in body["messages"]] == ["two", "three"]

        rooms = client.get("/rooms").json()["rooms"]
        assert rooms == [{"roomId": "live", "members": 1, "messages": 3}]
