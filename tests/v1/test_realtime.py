"""End-to-end tests of the WebSocket protocol."""

import pytest
from starlette.websockets import WebSocketDisconnect

from chatline.models import Message, MessageStatus, User


def _ws_url(token: str) -> str:
    return f"/api/v1/ws?token={token}"


def test_connection_without_token_is_refused(client) -> None:
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/api/v1/ws"):
            pass
    assert exc.value.code == 1008
    assert exc.value.reason == "unauthenticated"


def test_connection_with_bad_token_is_refused(client) -> None:
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(_ws_url("garbage")):
            pass
    assert exc.value.code == 1008
    assert exc.value.reason == "invalid_credential"


def test_bearer_header_is_accepted(client, auth_headers, reload, alice) -> None:
    with client.websocket_connect("/api/v1/ws", headers=auth_headers(alice)) as ws:
        frame = ws.receive_json()
        assert frame["event"] == "onlineUsers"
        assert [entry["userId"] for entry in frame["data"]] == [alice.id]
        assert reload(User, alice.id).is_online is True

    stored = reload(User, alice.id)
    assert stored.is_online is False
    assert stored.last_seen is not None


def test_message_between_online_friends(client, token_for, befriend, reload, alice, bob) -> None:
    befriend(alice, bob)
    with client.websocket_connect(_ws_url(token_for(alice))) as ws_a:
        assert ws_a.receive_json()["event"] == "onlineUsers"
        with client.websocket_connect(_ws_url(token_for(bob))) as ws_b:
            assert ws_b.receive_json()["event"] == "onlineUsers"
            online = ws_a.receive_json()
            assert online == {
                "event": "userOnline",
                "data": {"userId": bob.id, "username": "bob", "isOnline": True},
            }

            ws_a.send_json({"event": "joinConversation", "data": {"recipientId": bob.id}})
            assert ws_a.receive_json()["event"] == "roomJoined"
            ws_a.send_json(
                {"event": "sendMessage", "data": {"recipientId": bob.id, "content": "hi bob"}}
            )

            sent = ws_a.receive_json()
            assert sent["event"] == "newMessage"
            message_id = sent["data"]["message"]["id"]
            assert ws_a.receive_json() == {
                "event": "messageDelivered",
                "data": {"messageId": message_id, "status": "delivered"},
            }
            received = ws_b.receive_json()
            assert received["event"] == "newMessage"
            assert received["data"]["message"]["content"] == "hi bob"
            assert ws_b.receive_json()["event"] == "messageDelivered"

            ws_b.send_json({"event": "markAsRead", "data": {"messageId": message_id}})
            receipt = ws_a.receive_json()
            assert receipt["event"] == "messageRead"
            assert receipt["data"]["messageId"] == message_id
            assert receipt["data"]["status"] == "read"

        offline = ws_a.receive_json()
        assert offline["event"] == "userOffline"
        assert offline["data"]["userId"] == bob.id

    stored = reload(Message, message_id)
    assert stored.status is MessageStatus.READ
    assert stored.delivered_at is not None
    assert stored.read_at is not None


def test_message_to_offline_friend_stays_sent(client, token_for, befriend, reload, alice, bob) -> None:
    befriend(alice, bob)
    with client.websocket_connect(_ws_url(token_for(alice))) as ws_a:
        ws_a.receive_json()
        ws_a.send_json({"event": "sendMessage", "data": {"recipientId": bob.id, "content": "later"}})
        sent = ws_a.receive_json()
        assert sent["event"] == "newMessage"
        message_id = sent["data"]["message"]["id"]

        ws_a.send_json({"event": "joinConversation", "data": {"recipientId": bob.id}})
        assert ws_a.receive_json()["event"] == "roomJoined"

        with client.websocket_connect(_ws_url(token_for(bob))) as ws_b:
            assert ws_b.receive_json()["event"] == "onlineUsers"
            assert ws_a.receive_json()["event"] == "userOnline"

    assert reload(Message, message_id).status is MessageStatus.SENT


def test_non_friend_message_is_rejected(client, token_for, count_rows, alice, bob) -> None:
    with client.websocket_connect(_ws_url(token_for(alice))) as ws_a:
        ws_a.receive_json()
        ws_a.send_json({"event": "sendMessage", "data": {"recipientId": bob.id, "content": "hey"}})
        error = ws_a.receive_json()

    assert error["event"] == "messageError"
    assert error["data"]["code"] == "not_authorized"
    assert error["data"]["error"] == "You can only message friends"
    assert count_rows(Message) == 0


def test_malformed_frame_keeps_connection_open(client, token_for, alice) -> None:
    with client.websocket_connect(_ws_url(token_for(alice))) as ws:
        ws.receive_json()
        ws.send_text("{not json")
        assert ws.receive_json()["data"]["code"] == "invalid_request"
        ws.send_json({"event": "updateStatus", "data": {"status": "still here"}})
        ws.send_json({"event": "joinConversation", "data": {"recipientId": "someone"}})
        assert ws.receive_json()["event"] == "roomJoined"


def test_binary_frames_are_handled_like_text(client, token_for, alice, bob) -> None:
    with client.websocket_connect(_ws_url(token_for(alice))) as ws:
        ws.receive_json()
        ws.send_bytes(b'{"event": "joinConversation", "data": {"recipientId": "%s"}}' % bob.id.encode())
        assert ws.receive_json()["event"] == "roomJoined"

        ws.send_bytes(b"\xff\xfe not utf-8")
        error = ws.receive_json()
        assert error["event"] == "messageError"
        assert error["data"]["code"] == "invalid_request"

        ws.send_json({"event": "leaveConversation", "data": {"recipientId": bob.id}})
        assert ws.receive_json()["event"] == "roomLeft"


def test_burst_of_messages_keeps_order_for_both_parties(client, token_for, befriend, alice, bob) -> None:
    befriend(alice, bob)
    with client.websocket_connect(_ws_url(token_for(alice))) as ws_a:
        ws_a.receive_json()
        with client.websocket_connect(_ws_url(token_for(bob))) as ws_b:
            ws_b.receive_json()
            ws_a.receive_json()

            for i in range(5):
                ws_a.send_json({"event": "sendMessage", "data": {"recipientId": bob.id, "content": f"m{i}"}})

            def new_messages(ws) -> list[dict]:
                frames = [ws.receive_json() for _ in range(10)]
                return [f["data"]["message"] for f in frames if f["event"] == "newMessage"]

            seen_by_alice = new_messages(ws_a)
            seen_by_bob = new_messages(ws_b)

    for seen in (seen_by_alice, seen_by_bob):
        assert [m["content"] for m in seen] == [f"m{i}" for i in range(5)]
        assert [m["id"] for m in seen] == sorted(m["id"] for m in seen)
