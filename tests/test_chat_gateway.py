"""Tests for the realtime chat protocol over the WebSocket endpoint."""
import uuid

import pytest
from fastapi import WebSocketDisconnect
from sqlalchemy.exc import OperationalError

from app.chat.connection_manager import connection_manager
from app.chat.moderation import moderation_registry
from app.chat.room_directory import RoomDirectory
from app.crud import chat_message_crud, chat_room_crud
from app.model import ChatMessage, ChatRoom


def send(ws, event, payload=None):
    ws.send_json({"event": event, "payload": payload})


def receive(ws, event):
    data = ws.receive_json()
    assert data["event"] == event, data
    return data


def join(ws, user, mission="general"):
    send(ws, "joinRoom", {"missionId": str(mission), "userId": str(user.id)})
    return receive(ws, "joinedRoom")["payload"]


def test_connection_without_token_is_closed(client, ws_sessions):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/api/v1/chat/ws") as ws:
            ws.receive_json()
    assert exc.value.code == 4001


def test_connection_with_unknown_token_is_closed(client, ws_sessions):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/api/v1/chat/ws?token=nope") as ws:
            ws.receive_json()
    assert exc.value.code == 4001


def test_join_general_room(connect, setup_user):
    with connect(setup_user) as ws:
        joined = join(ws, setup_user)

    assert joined["title"] == "Chat General"
    assert joined["pinnedMessage"] == ""
    assert joined["locked"] is False
    uuid.UUID(joined["roomId"])


@pytest.mark.parametrize("payload", [
    {"missionId": "general"},
    {"userId": "someone"},
    {},
    None,
    "general",
])
def test_join_requires_mission_and_user(connect, setup_user, payload):
    with connect(setup_user) as ws:
        send(ws, "joinRoom", payload)
        error = receive(ws, "joinError")
    assert error["payload"]["message"] == "missionId and userId are required"


def test_join_rejects_other_user_id(connect, setup_user):
    with connect(setup_user) as ws:
        send(ws, "joinRoom", {"missionId": "general", "userId": str(uuid.uuid4())})
        receive(ws, "joinError")


def test_join_unknown_mission(connect, setup_user):
    with connect(setup_user) as ws:
        send(ws, "joinRoom", {"missionId": str(uuid.uuid4()), "userId": str(setup_user.id)})
        error = receive(ws, "joinError")
    assert error["payload"]["message"] == "Mission not found."


def test_second_join_on_same_connection_rejected(connect, setup_user, setup_mission):
    with connect(setup_user) as ws:
        join(ws, setup_user)
        send(ws, "joinRoom", {"missionId": str(setup_mission.id), "userId": str(setup_user.id)})
        error = receive(ws, "joinError")
    assert error["payload"]["message"] == "already joined a room"


def test_two_connections_join_same_mission_room(db, connect, make_user, setup_mission):
    alice, bob = make_user(), make_user()
    with connect(alice) as ws1, connect(bob) as ws2:
        send(ws1, "joinRoom", {"missionId": str(setup_mission.id), "userId": str(alice.id)})
        send(ws2, "joinRoom", {"missionId": str(setup_mission.id), "userId": str(bob.id)})
        joined1 = receive(ws1, "joinedRoom")["payload"]
        joined2 = receive(ws2, "joinedRoom")["payload"]

    assert joined1["roomId"] == joined2["roomId"]
    assert db.query(ChatRoom).filter(ChatRoom.mission_id == setup_mission.id).count() == 1
    room = RoomDirectory(db).resolve(joined1["roomId"])
    assert set(room.participant_ids) == {alice.id, bob.id}


def test_message_is_trimmed_persisted_and_broadcast(db, connect, make_user):
    alice, bob = make_user(), make_user()
    with connect(alice) as ws1, connect(bob) as ws2:
        room_id = join(ws1, alice)["roomId"]
        join(ws2, bob)

        send(ws1, "chatMessage", {"senderId": str(alice.id), "content": "  hello  "})
        event1 = receive(ws1, "newMessage")
        event2 = receive(ws2, "newMessage")

    assert event1 == event2
    assert event1["room_id"] == room_id
    payload = event1["payload"]
    assert payload["content"] == "hello"
    assert payload["type"] == "text"
    assert payload["sender"] == {"id": str(alice.id), "username": alice.username}
    assert payload["time"] and payload["createdAt"]

    stored = db.query(ChatMessage).all()
    assert [m.content for m in stored] == ["hello"]


def test_message_before_join(db, connect, setup_user):
    with connect(setup_user) as ws:
        send(ws, "chatMessage", {"senderId": str(setup_user.id), "content": "hi"})
        error = receive(ws, "messageError")
    assert error["payload"]["message"] == "invalid message or no room"
    assert db.query(ChatMessage).count() == 0


def test_blank_message_rejected(db, connect, setup_user):
    with connect(setup_user) as ws:
        join(ws, setup_user)
        send(ws, "chatMessage", {"senderId": str(setup_user.id), "content": "   "})
        error = receive(ws, "messageError")
        # connection stays usable
        send(ws, "chatMessage", {"content": "ok"})
        receive(ws, "newMessage")
    assert error["payload"]["message"] == "invalid message or no room"
    assert db.query(ChatMessage).count() == 1


def test_sender_must_match_session(db, connect, setup_user):
    with connect(setup_user) as ws:
        join(ws, setup_user)
        send(ws, "chatMessage", {"senderId": str(uuid.uuid4()), "content": "spoofed"})
        receive(ws, "messageError")
    assert db.query(ChatMessage).count() == 0


def test_lock_blocks_students_not_teachers(db, connect, setup_user, setup_teacher):
    with connect(setup_teacher) as teacher, connect(setup_user) as student:
        room_id = join(teacher, setup_teacher)["roomId"]
        join(student, setup_user)

        send(teacher, "lockRoom", room_id)
        assert receive(teacher, "chatLocked")["payload"]["message"]
        receive(student, "chatLocked")

        send(student, "chatMessage", {"content": "hello?"})
        assert receive(student, "messageError")["payload"]["message"] == "chat is locked"

        send(teacher, "chatMessage", {"content": "quiet please"})
        assert receive(student, "newMessage")["payload"]["content"] == "quiet please"
        receive(teacher, "newMessage")

        send(teacher, "unlockRoom", room_id)
        receive(teacher, "chatUnlocked")
        receive(student, "chatUnlocked")

        send(student, "chatMessage", {"content": "thanks"})
        assert receive(student, "newMessage")["payload"]["content"] == "thanks"

    assert [m.content for m in db.query(ChatMessage).order_by(ChatMessage.created_at)] == ["quiet please", "thanks"]


def test_joined_room_reports_lock_state(connect, setup_user, setup_teacher):
    with connect(setup_teacher) as teacher:
        room_id = join(teacher, setup_teacher)["roomId"]
        send(teacher, "lockRoom", {"roomId": room_id})
        receive(teacher, "chatLocked")
        with connect(setup_user) as student:
            assert join(student, setup_user)["locked"] is True


def test_student_moderation_is_silently_ignored(db, connect, setup_user):
    with connect(setup_user) as ws:
        room_id = join(ws, setup_user)["roomId"]
        send(ws, "lockRoom", room_id)
        send(ws, "blockUser", {"roomId": room_id, "targetUserId": str(setup_user.id)})
        send(ws, "pinMessage", {"roomId": room_id, "content": "mine"})
        send(ws, "chatMessage", {"content": "still talking"})
        # the first reply is the message itself: nothing was emitted for the moderation attempts
        assert receive(ws, "newMessage")["payload"]["content"] == "still talking"

    room = RoomDirectory(db).resolve(room_id)
    assert room.locked is False
    assert room.pinned_message == ""
    assert moderation_registry.blocked_users(room.id) == set()


def test_block_and_unblock_user(db, connect, setup_user, setup_teacher):
    with connect(setup_teacher) as teacher, connect(setup_user) as student:
        room_id = join(teacher, setup_teacher)["roomId"]
        join(student, setup_user)

        send(teacher, "blockUser", {"roomId": room_id, "targetUserId": str(setup_user.id)})
        assert receive(teacher, "userBlocked")["payload"] == {"targetUserId": str(setup_user.id)}
        assert receive(student, "userBlocked")["payload"] == {"targetUserId": str(setup_user.id)}

        send(student, "chatMessage", {"content": "hello"})
        assert receive(student, "messageError")["payload"]["message"] == "cannot send in this room"

        send(teacher, "unblockUser", {"roomId": room_id, "targetUserId": str(setup_user.id)})
        receive(teacher, "userUnblocked")
        receive(student, "userUnblocked")

        send(student, "chatMessage", {"content": "hello"})
        assert receive(student, "newMessage")["payload"]["content"] == "hello"


def test_blocked_user_cannot_join(db, connect, setup_user, setup_teacher):
    room = RoomDirectory(db).general_room()
    moderation_registry.block(room.id, setup_user.id)

    with connect(setup_user) as ws:
        send(ws, "joinRoom", {"missionId": "general", "userId": str(setup_user.id)})
        assert receive(ws, "blocked")["payload"]["message"]
        # no session was established
        send(ws, "chatMessage", {"content": "let me in"})
        assert receive(ws, "messageError")["payload"]["message"] == "invalid message or no room"

    assert connection_manager.subscriber_count(room.id) == 0


def test_block_in_one_room_does_not_affect_another(db, connect, setup_user, setup_teacher, setup_mission):
    with connect(setup_teacher) as teacher, connect(setup_user) as general, connect(setup_user) as mission:
        join(teacher, setup_teacher)
        join(general, setup_user)
        join(mission, setup_user, setup_mission.id)

        send(teacher, "blockUser", {"targetUserId": str(setup_user.id)})
        receive(teacher, "userBlocked")
        receive(general, "userBlocked")

        send(general, "chatMessage", {"content": "hi"})
        receive(general, "messageError")

        send(mission, "chatMessage", {"content": "hi from the mission room"})
        assert receive(mission, "newMessage")["payload"]["content"] == "hi from the mission room"


def test_pin_and_clear_pin(db, connect, setup_user, setup_teacher):
    with connect(setup_teacher) as teacher, connect(setup_user) as student:
        room_id = join(teacher, setup_teacher)["roomId"]
        join(student, setup_user)

        send(teacher, "pinMessage", {"roomId": room_id, "content": " Read chapter 3 "})
        pinned = receive(student, "messagePinned")["payload"]
        receive(teacher, "messagePinned")
        assert pinned == {"content": "Read chapter 3", "pinnedBy": str(setup_teacher.id)}
        assert RoomDirectory(db).resolve(room_id).pinned_message == "Read chapter 3"

        send(teacher, "clearPin", {"roomId": room_id})
        assert receive(student, "pinCleared")["payload"] == {"clearedBy": str(setup_teacher.id)}
        receive(teacher, "pinCleared")

    db.expire_all()
    assert RoomDirectory(db).resolve(room_id).pinned_message == ""


def test_blank_pin_reports_error(connect, setup_teacher):
    with connect(setup_teacher) as teacher:
        room_id = join(teacher, setup_teacher)["roomId"]
        send(teacher, "pinMessage", {"roomId": room_id, "content": "   "})
        receive(teacher, "messageError")


def test_moderation_with_invalid_room_id(connect, setup_teacher):
    with connect(setup_teacher) as teacher:
        join(teacher, setup_teacher)
        send(teacher, "lockRoom", "not-a-room")
        receive(teacher, "messageError")


def test_lock_unknown_room(connect, setup_teacher):
    with connect(setup_teacher) as teacher:
        join(teacher, setup_teacher)
        send(teacher, "lockRoom", str(uuid.uuid4()))
        assert receive(teacher, "messageError")["payload"]["message"] == "Room not found."


def test_malformed_frames(connect, setup_user):
    with connect(setup_user) as ws:
        ws.send_text("{not json")
        assert receive(ws, "error")["payload"]["code"] == "INVALID_JSON"
        ws.send_json(["joinRoom"])
        assert receive(ws, "error")["payload"]["code"] == "INVALID_FRAME"
        send(ws, "dance")
        assert receive(ws, "error")["payload"]["code"] == "UNKNOWN_EVENT"


def test_disconnect_unsubscribes(connect, setup_user):
    with connect(setup_user) as ws:
        room_id = uuid.UUID(join(ws, setup_user)["roomId"])
        assert connection_manager.subscriber_count(room_id) == 1
    assert connection_manager.subscriber_count(room_id) == 0


def failing(statement):
    def _fail(*args, **kwargs):
        raise OperationalError(statement, {}, Exception("database is locked"))

    return _fail


def test_storage_failure_on_send_keeps_connection_open(db, connect, setup_user, monkeypatch):
    with connect(setup_user) as ws:
        join(ws, setup_user)

        with monkeypatch.context() as m:
            m.setattr(chat_room_crud, "get_by_id", failing("SELECT"))
            send(ws, "chatMessage", {"content": "hello"})
            assert receive(ws, "messageError")["payload"]["message"] == "Failed to load room."

        send(ws, "chatMessage", {"content": "hello"})
        assert receive(ws, "newMessage")["payload"]["content"] == "hello"

    assert db.query(ChatMessage).count() == 1


def test_storage_failure_on_join_can_be_retried(connect, setup_user, monkeypatch):
    with connect(setup_user) as ws:
        with monkeypatch.context() as m:
            m.setattr(chat_room_crud, "get_by_alias", failing("SELECT"))
            send(ws, "joinRoom", {"missionId": "general", "userId": str(setup_user.id)})
            receive(ws, "joinError")

        assert join(ws, setup_user)["title"] == "Chat General"


def test_failed_insert_is_reported_to_sender_only(db, connect, make_user, monkeypatch):
    alice, bob = make_user(), make_user()
    with connect(alice) as sender, connect(bob) as peer:
        join(sender, alice)
        join(peer, bob)

        with monkeypatch.context() as m:
            m.setattr(chat_message_crud, "create_from_dict", failing("INSERT"))
            send(sender, "chatMessage", {"content": "lost"})
            assert receive(sender, "messageError")["payload"]["message"] == "could not send message"

        send(sender, "chatMessage", {"content": "delivered"})
        # the failed message never reached the peer: its next frame is the later one
        assert receive(peer, "newMessage")["payload"]["content"] == "delivered"
        assert receive(sender, "newMessage")["payload"]["content"] == "delivered"

    assert [m.content for m in db.query(ChatMessage)] == ["delivered"]
