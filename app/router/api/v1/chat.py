"""
Chat API: rooms and messages (REST). WebSocket in same module.
"""
import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, WebSocket, status
from fastapi.responses import JSONResponse
import redis
from sqlalchemy.orm import Session

from app.chat.connection_manager import connection_manager
from app.chat.gateway import LOCKED_NOTICE, UNLOCKED_NOTICE, ChatGateway, ServerEvent
from app.chat.room_directory import RoomDirectory, is_valid_room_id, parse_room_id
from app.chat.service import ChatService, ModerationResult, message_to_payload
from app.core.database import get_db
from app.core.dependencies import current_user_id, validate_session
from app.core.exceptions import Unauthorized, ValidationError
from app.crud import chat_message_crud, chat_room_crud
from app.model.chat_room import ChatRoom
from app.schema.chat import (
    MessageCreateBody,
    MessageResponse,
    RoomCreateBody,
    RoomCreatedResponse,
    RoomDebugResponse,
    RoomListItem,
    RoomResponse,
    RoomUpdateBody,
)
from app.session import get_session

router = APIRouter()
logger = logging.getLogger(__name__)


def _room_response(room: ChatRoom) -> RoomResponse:
    return RoomResponse(
        id=room.id,
        title=room.title,
        mission_id=room.mission_id,
        created_by=room.created_by,
        pinned_message=room.pinned_message or "",
        locked=bool(room.locked),
        participants=room.participant_ids,
        created_at=room.created_at,
    )


# --- REST: Rooms ---

@router.post("/chatrooms", response_model=RoomCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_room(
    body: RoomCreateBody,
    current_user: Dict[str, Any] = Depends(validate_session),
    db: Session = Depends(get_db),
):
    """Create a free room, optionally bound to a mission. The creator is the first participant."""
    room = RoomDirectory(db).create_room(
        title=body.title,
        mission_id=body.mission_id,
        creator_id=current_user_id(current_user),
    )
    return RoomCreatedResponse(message="Room created", room=_room_response(room))


@router.post("/chatrooms/mission", response_model=RoomCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_mission_room(
    body: RoomCreateBody,
    current_user: Dict[str, Any] = Depends(validate_session),
    db: Session = Depends(get_db),
):
    """Create the room of a mission (missionId required)."""
    if not body.mission_id:
        raise ValidationError("missionId is required.", code="MISSING_MISSION_ID")
    room = RoomDirectory(db).create_room(
        title=body.title,
        mission_id=body.mission_id,
        creator_id=current_user_id(current_user),
    )
    return RoomCreatedResponse(message="Mission room created", room=_room_response(room))


@router.get("/chatrooms", response_model=List[RoomListItem])
async def list_rooms(
    current_user: Dict[str, Any] = Depends(validate_session),
    db: Session = Depends(get_db),
):
    """All rooms with creator and mission summaries."""
    return [RoomListItem.model_validate(room) for room in chat_room_crud.list_with_summaries(db)]


@router.get("/chatrooms/debug/{room_id}", response_model=RoomDebugResponse)
async def debug_room(room_id: str, db: Session = Depends(get_db)):
    """Diagnostics, no auth: is the id valid, does the room exist, how many messages."""
    if not is_valid_room_id(room_id):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"valid": False})
    room = chat_room_crud.get_by_id(db, room_id=parse_room_id(room_id))
    if not room:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"valid": True, "exists": False})
    return RoomDebugResponse(
        valid=True,
        exists=True,
        title=room.title,
        message_count=chat_message_crud.count_by_room(db, room_id=room.id),
        locked=bool(room.locked),
    )


@router.get("/chatrooms/{room_id}", response_model=RoomResponse)
async def get_room(
    room_id: str,
    current_user: Dict[str, Any] = Depends(validate_session),
    db: Session = Depends(get_db),
):
    """Room info by id or the "general" alias, including pin and lock state."""
    return _room_response(RoomDirectory(db).resolve(room_id))


@router.patch("/chatrooms/{room_id}", response_model=RoomResponse)
async def update_room(
    room_id: str,
    body: RoomUpdateBody,
    current_user: Dict[str, Any] = Depends(validate_session),
    db: Session = Depends(get_db),
):
    """Pin, clear the pin, lock or unlock. Admins and teachers only; changes are pushed to the room."""
    room = RoomDirectory(db).resolve(room_id)
    service = ChatService(db)
    session = service.open_session(room.id, current_user_id(current_user))
    if service.authorize(session, "updateRoom") is ModerationResult.DENIED:
        raise Unauthorized()

    events = []
    if body.pinned_message is not None:
        content = body.pinned_message.strip()
        if content:
            service.pin_message(session, room.id, content)
            events.append((ServerEvent.MESSAGE_PINNED, {"content": content, "pinnedBy": str(session.user_id)}))
        else:
            service.clear_pin(session, room.id)
            events.append((ServerEvent.PIN_CLEARED, {"clearedBy": str(session.user_id)}))
    if body.locked is not None:
        service.set_locked(session, room.id, body.locked)
        if body.locked:
            events.append((ServerEvent.CHAT_LOCKED, {"message": LOCKED_NOTICE}))
        else:
            events.append((ServerEvent.CHAT_UNLOCKED, {"message": UNLOCKED_NOTICE}))

    db.refresh(room)
    for event, payload in events:
        await connection_manager.broadcast_to_room(room.id, event.value, payload)
    return _room_response(room)


# --- REST: Messages ---

@router.get("/chatrooms/{room_id}/messages", response_model=List[MessageResponse])
async def list_messages(
    room_id: str,
    current_user: Dict[str, Any] = Depends(validate_session),
    db: Session = Depends(get_db),
):
    """Full history of a room, oldest first."""
    room = RoomDirectory(db).resolve(room_id)
    return [MessageResponse.model_validate(m) for m in chat_message_crud.list_by_room(db, room_id=room.id)]


@router.post("/chatrooms/{room_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def create_message(
    room_id: str,
    body: MessageCreateBody,
    current_user: Dict[str, Any] = Depends(validate_session),
    db: Session = Depends(get_db),
):
    """Post a message. Same lock/block rules as the realtime channel; broadcast to live subscribers."""
    room = RoomDirectory(db).resolve(room_id)
    service = ChatService(db)
    session = service.open_session(room.id, current_user_id(current_user))
    msg = service.send_message(session, body.content)
    await connection_manager.broadcast_to_room(room.id, ServerEvent.NEW_MESSAGE.value, message_to_payload(msg))
    return MessageResponse.model_validate(msg)


# --- WebSocket ---

@router.websocket("/chat/ws")
async def websocket_chat(
    websocket: WebSocket,
    token: Optional[str] = None,
):
    """Realtime chat. Auth via query ?token=; then joinRoom, chatMessage and moderation events."""
    await websocket.accept()
    user_id = None
    if token:
        try:
            session = get_session(token)
        except (RuntimeError, redis.RedisError) as e:
            logger.warning("Session lookup unavailable: %s", e)
            session = None
        if session:
            user_id = session.get("user_id")
    try:
        user_id = uuid.UUID(str(user_id)) if user_id else None
    except ValueError:
        user_id = None
    if not user_id:
        await websocket.close(code=4001)
        return
    await ChatGateway(websocket, user_id).run()
