"""Tests for connection lifecycle and event dispatch."""

import asyncio
import json

import pytest

from chatline.models import Message, User
from chatline.services.errors import Unauthenticated
from chatline.services.gateway import GENERIC_FAILURE, ChatGateway
from tests.helpers import FakeSocket


def _frame(event: str, **data) -> str:
    return json.dumps({"event": event, "data": data})


@pytest.mark.asyncio
async def test_connect_announces_user_and_sends_snapshot(gateway, connect_user, reload, alice, bob) -> None:
    a = connect_user(alice)
    await gateway.connect(a)
    b = connect_user(bob)
    await gateway.connect(b)

    assert a.socket.of("userOnline") == [{"userId": bob.id, "username": "bob", "isOnline": True}]
    assert b.socket.events == ["onlineUsers"]
    (snapshot,) = b.socket.of("onlineUsers")
    assert {entry["userId"] for entry in snapshot} == {alice.id, bob.id}
    assert reload(User, bob.id).is_online is True


@pytest.mark.asyncio
async def test_disconnect_marks_offline_and_announces(gateway, connect_user, reload, alice, bob) -> None:
    a, b = connect_user(alice), connect_user(bob)
    await gateway.connect(a)
    generation = await gateway.connect(b)
    a.socket.clear()

    assert await gateway.disconnect(b, generation) is True

    (offline,) = a.socket.of("userOffline")
    assert offline["userId"] == bob.id
    assert offline["isOnline"] is False
    assert offline["lastSeen"] is not None
    stored = reload(User, bob.id)
    assert stored.is_online is False
    assert stored.last_seen is not None
    assert not gateway.presence.is_online(bob.id)


@pytest.mark.asyncio
async def test_stale_disconnect_keeps_newer_connection(gateway, connect_user, reload, alice, bob) -> None:
    watcher = connect_user(bob)
    await gateway.connect(watcher)
    first = connect_user(alice)
    first_generation = await gateway.connect(first)
    second = connect_user(alice)
    await gateway.connect(second)
    watcher.socket.clear()

    assert await gateway.disconnect(first, first_generation) is False

    assert gateway.presence.connection_for(alice.id) is second
    assert watcher.socket.frames == []
    assert reload(User, alice.id).is_online is True


@pytest.mark.asyncio
async def test_disconnect_leaves_rooms(gateway, connect_user, alice, bob) -> None:
    a = connect_user(alice)
    generation = await gateway.connect(a)
    await gateway.dispatch(a, _frame("joinConversation", recipientId=bob.id))

    await gateway.disconnect(a, generation)

    assert gateway.rooms.rooms_for(a) == set()


@pytest.mark.asyncio
async def test_join_and_leave_conversation(gateway, connect_user, alice, bob) -> None:
    a = connect_user(alice)
    key = "-".join(sorted([alice.id, bob.id]))

    await gateway.dispatch(a, _frame("joinConversation", recipientId=bob.id))
    await gateway.dispatch(a, {"event": "leaveConversation", "data": {"recipientId": bob.id}})

    assert a.socket.of("roomJoined") == [{"roomId": key, "recipientId": bob.id}]
    assert a.socket.of("roomLeft") == [{"roomId": key, "recipientId": bob.id}]
    assert key not in gateway.rooms


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "frame",
    [
        "not json",
        "[1, 2, 3]",
        json.dumps({"data": {}}),
        _frame("selfDestruct"),
        _frame("sendMessage", content="missing recipient"),
        _frame("markAsRead", messageId="abc"),
    ],
)
async def test_bad_frames_produce_one_invalid_request(gateway, connect_user, alice, frame) -> None:
    a = connect_user(alice)

    await gateway.dispatch(a, frame)

    (error,) = a.socket.of("messageError")
    assert error["code"] == "invalid_request"
    assert len(a.socket.frames) == 1


@pytest.mark.asyncio
async def test_send_to_non_friend_yields_single_error(gateway, connect_user, count_rows, alice, bob) -> None:
    a, b = connect_user(alice), connect_user(bob)
    await gateway.connect(a)
    await gateway.connect(b)
    a.socket.clear()
    b.socket.clear()

    await gateway.dispatch(a, _frame("sendMessage", recipientId=bob.id, content="hey"))

    assert a.socket.events == ["messageError"]
    assert a.socket.of("messageError") == [
        {"error": "You can only message friends", "code": "not_authorized", "details": {"recipientId": bob.id}}
    ]
    assert b.socket.frames == []
    assert count_rows(Message) == 0


@pytest.mark.asyncio
async def test_send_and_read_through_dispatch(gateway, connect_user, befriend, alice, bob) -> None:
    befriend(alice, bob)
    a, b = connect_user(alice), connect_user(bob)
    await gateway.connect(a)
    await gateway.connect(b)
    a.socket.clear()
    b.socket.clear()

    await gateway.dispatch(a, _frame("sendMessage", recipientId=bob.id, content="hello"))
    (incoming,) = b.socket.of("newMessage")
    message_id = incoming["message"]["id"]
    await gateway.dispatch(b, _frame("markAsRead", messageId=message_id, senderId=alice.id))

    assert a.socket.events == ["newMessage", "messageDelivered", "messageRead"]
    assert b.socket.events == ["newMessage", "messageDelivered"]


@pytest.mark.asyncio
async def test_typing_and_status_events(gateway, connect_user, alice, bob) -> None:
    a, b = connect_user(alice), connect_user(bob)
    await gateway.connect(a)
    await gateway.connect(b)
    b.socket.clear()

    await gateway.dispatch(a, _frame("typing", recipientId=bob.id, isTyping=True))
    await gateway.dispatch(a, _frame("updateStatus", status="away"))

    assert b.socket.events == ["userTyping", "userStatusUpdate"]


@pytest.mark.asyncio
async def test_unexpected_errors_are_reported_generically(gateway, connect_user, mocker, alice, bob) -> None:
    a = connect_user(alice)
    mocker.patch.object(gateway.pipeline, "typing", side_effect=KeyError("boom"))

    await gateway.dispatch(a, _frame("typing", recipientId=bob.id, isTyping=True))

    assert a.socket.of("messageError") == [{"error": GENERIC_FAILURE}]


@pytest.mark.asyncio
async def test_authenticate_times_out(store, mocker) -> None:
    gateway = ChatGateway(store, handshake_timeout=0.01)

    async def never_returns(token):
        await asyncio.Event().wait()

    mocker.patch.object(gateway.authenticator, "authenticate", side_effect=never_returns)

    with pytest.raises(Unauthenticated) as exc:
        await gateway.authenticate("whatever")
    assert exc.value.message == "Authentication timed out"


@pytest.mark.asyncio
async def test_open_binds_user_profile(gateway, alice) -> None:
    conn = gateway.open(FakeSocket(), alice)
    assert conn.user_id == alice.id
    assert conn.display_name == "Alice"


@pytest.mark.asyncio
async def test_bytes_frames_are_decoded(gateway, connect_user, alice, bob) -> None:
    a = connect_user(alice)

    await gateway.dispatch(a, _frame("joinConversation", recipientId=bob.id).encode())
    await gateway.dispatch(a, b"\x80\x81")

    assert a.socket.events == ["roomJoined", "messageError"]
    assert a.socket.of("messageError")[0]["code"] == "invalid_request"


@pytest.mark.asyncio
async def test_messages_from_one_connection_arrive_in_persisted_order(
    gateway, connect_user, befriend, alice, bob
) -> None:
    befriend(alice, bob)
    a, b = connect_user(alice), connect_user(bob)
    await gateway.connect(a)
    await gateway.connect(b)
    await gateway.dispatch(b, _frame("joinConversation", recipientId=alice.id))

    for i in range(5):
        await gateway.dispatch(a, _frame("sendMessage", recipientId=bob.id, content=f"m{i}"))

    for conn in (a, b):
        messages = [payload["message"] for payload in conn.socket.of("newMessage")]
        assert [m["content"] for m in messages] == ["m0", "m1", "m2", "m3", "m4"]
        ids = [m["id"] for m in messages]
        assert ids == sorted(ids)
        assert len(set(ids)) == 5


@pytest.mark.asyncio
async def test_read_receipt_ignores_claimed_sender(gateway, connect_user, befriend, alice, bob, carol) -> None:
    befriend(alice, bob)
    message = await gateway.pipeline.send(alice.id, bob.id, "hi")
    a, b, c = connect_user(alice), connect_user(bob), connect_user(carol)
    for conn in (a, b, c):
        await gateway.connect(conn)
    for conn in (a, b, c):
        conn.socket.clear()

    await gateway.dispatch(b, _frame("markAsRead", messageId=message.id, senderId=carol.id))

    assert [f["messageId"] for f in a.socket.of("messageRead")] == [message.id]
    assert c.socket.of("messageRead") == []
