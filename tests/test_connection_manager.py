"""Tests for the room pub/sub used for fan-out."""
import json
import uuid

import pytest

from app.chat.connection_manager import ConnectionManager, encode_event


class FakeWebSocket:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(json.loads(text))


@pytest.mark.asyncio
async def test_broadcast_reaches_room_subscribers_only():
    manager = ConnectionManager()
    room_a, room_b = uuid.uuid4(), uuid.uuid4()
    ws1, ws2, ws3 = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()
    await manager.subscribe(ws1, room_a)
    await manager.subscribe(ws2, room_a)
    await manager.subscribe(ws3, room_b)

    delivered = await manager.broadcast_to_room(room_a, "newMessage", {"content": "hi"})

    assert delivered == 2
    assert ws1.sent == [{"event": "newMessage", "room_id": str(room_a), "payload": {"content": "hi"}}]
    assert ws2.sent == ws1.sent
    assert ws3.sent == []


@pytest.mark.asyncio
async def test_unsubscribe_removes_connection():
    manager = ConnectionManager()
    room = uuid.uuid4()
    ws = FakeWebSocket()
    await manager.subscribe(ws, room)
    assert manager.subscriber_count(room) == 1

    await manager.unsubscribe(ws, room)

    assert manager.subscriber_count(room) == 0
    assert await manager.broadcast_to_room(room, "chatLocked", {"message": "locked"}) == 0
    assert ws.sent == []


@pytest.mark.asyncio
async def test_dead_connections_are_pruned():
    manager = ConnectionManager()
    room = uuid.uuid4()
    alive, dead = FakeWebSocket(), FakeWebSocket(fail=True)
    await manager.subscribe(alive, room)
    await manager.subscribe(dead, room)

    delivered = await manager.broadcast_to_room(room, "newMessage", {"content": "hi"})

    assert delivered == 1
    assert manager.subscriber_count(room) == 1


@pytest.mark.asyncio
async def test_send_personal_to_closed_socket_is_not_an_error():
    manager = ConnectionManager()
    assert await manager.send_personal(FakeWebSocket(fail=True), "messageError", {"message": "x"}) is False


def test_encode_event_without_room():
    assert json.loads(encode_event("error", {"code": "INVALID_JSON"})) == {
        "event": "error",
        "room_id": None,
        "payload": {"code": "INVALID_JSON"},
    }
