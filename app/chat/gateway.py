"""
Realtime chat gateway: one instance per WebSocket connection.

Client frames are JSON objects {"event": <name>, "payload": <object|string>}.
Server frames are {"event": <name>, "room_id": <uuid|null>, "payload": {...}}.

Failures never close the connection: each is reported to the originating
connection only, with the error event that belongs to the client event.
Moderation requests from non-elevated sessions are dropped without a reply.
"""
import json
import logging
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.chat.connection_manager import ConnectionManager, connection_manager
from app.chat.moderation import ModerationRegistry, moderation_registry
from app.chat.room_directory import RoomDirectory, parse_room_id
from app.chat.service import ChatService, ModerationResult, message_to_payload
from app.chat.session import ChatSession
from app.core.database import SessionLocal
from app.core.exceptions import AppException, InvalidIdentifier, PersistenceError

logger = logging.getLogger(__name__)


class ClientEvent(str, Enum):
    JOIN_ROOM = "joinRoom"
    CHAT_MESSAGE = "chatMessage"
    BLOCK_USER = "blockUser"
    UNBLOCK_USER = "unblockUser"
    LOCK_ROOM = "lockRoom"
    UNLOCK_ROOM = "unlockRoom"
    PIN_MESSAGE = "pinMessage"
    CLEAR_PIN = "clearPin"


class ServerEvent(str, Enum):
    JOINED_ROOM = "joinedRoom"
    JOIN_ERROR = "joinError"
    BLOCKED = "blocked"
    NEW_MESSAGE = "newMessage"
    MESSAGE_ERROR = "messageError"
    USER_BLOCKED = "userBlocked"
    USER_UNBLOCKED = "userUnblocked"
    CHAT_LOCKED = "chatLocked"
    CHAT_UNLOCKED = "chatUnlocked"
    MESSAGE_PINNED = "messagePinned"
    PIN_CLEARED = "pinCleared"
    ERROR = "error"


BLOCKED_NOTICE = "You have been blocked in this room by the teacher."
LOCKED_NOTICE = "The chat has been locked by the teacher."
UNLOCKED_NOTICE = "The chat has been unlocked."


class ChatGateway:
    """Protocol handler for a single authenticated connection."""

    def __init__(
        self,
        websocket: WebSocket,
        user_id: uuid.UUID,
        *,
        manager: ConnectionManager = connection_manager,
        registry: ModerationRegistry = moderation_registry,
        session_factory: sessionmaker = SessionLocal,
    ) -> None:
        self.websocket = websocket
        self.user_id = user_id
        self.manager = manager
        self.registry = registry
        self.session_factory = session_factory
        self.session: Optional[ChatSession] = None
        self._handlers: Dict[str, Callable[[Optional[ChatSession], Any], Awaitable[None]]] = {
            ClientEvent.JOIN_ROOM.value: self.on_join_room,
            ClientEvent.CHAT_MESSAGE.value: self.on_chat_message,
            ClientEvent.BLOCK_USER.value: self.on_block_user,
            ClientEvent.UNBLOCK_USER.value: self.on_unblock_user,
            ClientEvent.LOCK_ROOM.value: self.on_lock_room,
            ClientEvent.UNLOCK_ROOM.value: self.on_unlock_room,
            ClientEvent.PIN_MESSAGE.value: self.on_pin_message,
            ClientEvent.CLEAR_PIN.value: self.on_clear_pin,
        }

    async def run(self) -> None:
        try:
            while True:
                data = await self.websocket.receive_text()
                await self.dispatch(data)
        except WebSocketDisconnect:
            logger.info("WebSocket disconnected: user %s", self.user_id)
        except Exception as e:
            logger.warning("WebSocket closed: %s", e)
        finally:
            await self.disconnect()

    async def dispatch(self, data: str) -> None:
        try:
            frame = json.loads(data)
        except json.JSONDecodeError:
            await self._emit_error("INVALID_JSON", "Request body must be valid JSON.")
            return
        if not isinstance(frame, dict):
            await self._emit_error("INVALID_FRAME", "Expected a JSON object with an event field.")
            return
        handler = self._handlers.get(frame.get("event"))
        if handler is None:
            await self._emit_error(
                "UNKNOWN_EVENT",
                "Expected event: " + ", ".join(e.value for e in ClientEvent) + ".",
            )
            return
        try:
            await handler(self.session, frame.get("payload"))
        except SQLAlchemyError as e:
            # storage failures outside the service layer still leave the connection open
            logger.exception("Storage failure handling %s: %s", frame.get("event"), e)
            error_event = (
                ServerEvent.JOIN_ERROR if frame.get("event") == ClientEvent.JOIN_ROOM.value else ServerEvent.MESSAGE_ERROR
            )
            await self._emit(error_event, {"message": PersistenceError.message})

    async def disconnect(self) -> None:
        if self.session is not None:
            await self.manager.unsubscribe(self.websocket, self.session.room_id)
        self.session = None

    # --- Join ---

    async def on_join_room(self, session: Optional[ChatSession], payload: Any) -> None:
        data = payload if isinstance(payload, dict) else {}
        mission_id = data.get("missionId")
        claimed_user = data.get("userId")
        if not mission_id or not claimed_user:
            await self._emit(ServerEvent.JOIN_ERROR, {"message": "missionId and userId are required"})
            return
        if str(claimed_user) != str(self.user_id):
            await self._emit(ServerEvent.JOIN_ERROR, {"message": "userId does not match the authenticated user"})
            return
        if session is not None:
            await self._emit(ServerEvent.JOIN_ERROR, {"message": "already joined a room"}, session.room_id)
            return

        db = self.session_factory()
        try:
            directory = RoomDirectory(db)
            room = directory.resolve_for_mission(str(mission_id), self.user_id)
            if self.registry.is_blocked(room.id, self.user_id):
                await self._emit(ServerEvent.BLOCKED, {"message": BLOCKED_NOTICE}, room.id)
                return
            directory.add_participant(room, self.user_id)
            new_session = ChatService(db, self.registry).open_session(room.id, self.user_id)
            joined = {
                "roomId": str(room.id),
                "title": room.title,
                "pinnedMessage": room.pinned_message or "",
                "locked": bool(room.locked),
            }
        except AppException as e:
            logger.info("Join failed for user %s (%s): %s", self.user_id, mission_id, e.message)
            await self._emit(ServerEvent.JOIN_ERROR, {"message": e.message})
            return
        finally:
            db.close()

        self.session = new_session
        await self.manager.subscribe(self.websocket, new_session.room_id)
        await self._emit(ServerEvent.JOINED_ROOM, joined, new_session.room_id)

    # --- Messages ---

    async def on_chat_message(self, session: Optional[ChatSession], payload: Any) -> None:
        data = payload if isinstance(payload, dict) else {}
        sender_id = data.get("senderId")
        if session is not None and sender_id and str(sender_id) != str(session.user_id):
            await self._emit(ServerEvent.MESSAGE_ERROR, {"message": "invalid message or no room"}, session.room_id)
            return
        db = self.session_factory()
        try:
            msg = ChatService(db, self.registry).send_message(session, data.get("content"))
            event = message_to_payload(msg)
        except AppException as e:
            await self._emit(ServerEvent.MESSAGE_ERROR, {"message": e.message}, session.room_id if session else None)
            return
        finally:
            db.close()
        await self.manager.broadcast_to_room(session.room_id, ServerEvent.NEW_MESSAGE.value, event)

    # --- Moderation ---

    async def on_block_user(self, session: Optional[ChatSession], payload: Any) -> None:
        await self._moderate_user(session, payload, ClientEvent.BLOCK_USER)

    async def on_unblock_user(self, session: Optional[ChatSession], payload: Any) -> None:
        await self._moderate_user(session, payload, ClientEvent.UNBLOCK_USER)

    async def on_lock_room(self, session: Optional[ChatSession], payload: Any) -> None:
        room_id = await self._moderation_target(session, ClientEvent.LOCK_ROOM, payload)
        if room_id is None:
            return
        if await self._run_moderation(lambda service: service.lock_room(session, room_id), room_id):
            await self.manager.broadcast_to_room(room_id, ServerEvent.CHAT_LOCKED.value, {"message": LOCKED_NOTICE})

    async def on_unlock_room(self, session: Optional[ChatSession], payload: Any) -> None:
        room_id = await self._moderation_target(session, ClientEvent.UNLOCK_ROOM, payload)
        if room_id is None:
            return
        if await self._run_moderation(lambda service: service.unlock_room(session, room_id), room_id):
            await self.manager.broadcast_to_room(room_id, ServerEvent.CHAT_UNLOCKED.value, {"message": UNLOCKED_NOTICE})

    async def on_pin_message(self, session: Optional[ChatSession], payload: Any) -> None:
        room_id = await self._moderation_target(session, ClientEvent.PIN_MESSAGE, payload)
        if room_id is None:
            return
        content = payload.get("content") if isinstance(payload, dict) else None
        if await self._run_moderation(lambda service: service.pin_message(session, room_id, content), room_id):
            await self.manager.broadcast_to_room(
                room_id,
                ServerEvent.MESSAGE_PINNED.value,
                {"content": content.strip(), "pinnedBy": str(session.user_id)},
            )

    async def on_clear_pin(self, session: Optional[ChatSession], payload: Any) -> None:
        room_id = await self._moderation_target(session, ClientEvent.CLEAR_PIN, payload)
        if room_id is None:
            return
        if await self._run_moderation(lambda service: service.clear_pin(session, room_id), room_id):
            await self.manager.broadcast_to_room(
                room_id, ServerEvent.PIN_CLEARED.value, {"clearedBy": str(session.user_id)}
            )

    async def _moderate_user(self, session: Optional[ChatSession], payload: Any, action: ClientEvent) -> None:
        room_id = await self._moderation_target(session, action, payload)
        if room_id is None:
            return
        target = payload.get("targetUserId") if isinstance(payload, dict) else None
        try:
            target_id = uuid.UUID(str(target))
        except ValueError:
            await self._emit(ServerEvent.MESSAGE_ERROR, {"message": "targetUserId must be a valid user id"}, room_id)
            return
        if action is ClientEvent.BLOCK_USER:
            ok = await self._run_moderation(lambda service: service.block_user(session, room_id, target_id), room_id)
            event = ServerEvent.USER_BLOCKED
        else:
            ok = await self._run_moderation(lambda service: service.unblock_user(session, room_id, target_id), room_id)
            event = ServerEvent.USER_UNBLOCKED
        if ok:
            await self.manager.broadcast_to_room(room_id, event.value, {"targetUserId": str(target_id)})

    async def _moderation_target(
        self,
        session: Optional[ChatSession],
        action: ClientEvent,
        payload: Any,
    ) -> Optional[uuid.UUID]:
        """
        Room a moderation request applies to, or None when the request is dropped.

        Non-elevated callers are dropped silently. The room is the payload's
        roomId (or the bare string payload), defaulting to the session's room.
        """
        if ChatService.authorize(session, action.value) is ModerationResult.DENIED:
            return None
        raw = payload.get("roomId") if isinstance(payload, dict) else payload
        if not raw:
            return session.room_id
        try:
            return parse_room_id(raw)
        except InvalidIdentifier as e:
            await self._emit(ServerEvent.MESSAGE_ERROR, {"message": e.message}, session.room_id)
            return None

    async def _run_moderation(
        self,
        action: Callable[[ChatService], ModerationResult],
        room_id: uuid.UUID,
    ) -> bool:
        """Run a moderation write; True when it was authorized and persisted."""
        db = self.session_factory()
        try:
            return action(ChatService(db, self.registry)) is ModerationResult.AUTHORIZED
        except AppException as e:
            await self._emit(ServerEvent.MESSAGE_ERROR, {"message": e.message}, room_id)
            return False
        finally:
            db.close()

    # --- Output ---

    async def _emit(self, event: ServerEvent, payload: Dict[str, Any], room_id: Optional[uuid.UUID] = None) -> None:
        await self.manager.send_personal(self.websocket, event.value, payload, room_id)

    async def _emit_error(self, code: str, message: str) -> None:
        await self._emit(ServerEvent.ERROR, {"code": code, "message": message})
