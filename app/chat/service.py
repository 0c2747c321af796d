"""
Chat operations shared by the realtime gateway and the HTTP API.

Both transports build a ChatSession and call the same methods, so lock and
block enforcement cannot drift between them. Methods persist and return;
fan-out is left to the caller and only happens after a successful commit.
"""
import logging
import uuid
from enum import Enum
from typing import Any, Callable, Dict, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.chat.moderation import ModerationRegistry, moderation_registry
from app.chat.session import ChatSession
from app.core.config import settings
from app.core.exceptions import Forbidden, NotFound, PersistenceError, ValidationError
from app.crud import chat_message_crud, chat_room_crud, user_crud
from app.model.chat_message import ChatMessage, MessageType
from app.model.chat_room import ChatRoom

logger = logging.getLogger(__name__)

T = TypeVar("T")

INVALID_MESSAGE = "invalid message or no room"
CHAT_LOCKED = "chat is locked"
SENDER_BLOCKED = "cannot send in this room"


class ModerationResult(str, Enum):
    AUTHORIZED = "authorized"
    DENIED = "denied"


def message_to_payload(msg: ChatMessage) -> Dict[str, Any]:
    """newMessage event body."""
    sender = msg.sender
    return {
        "sender": {
            "id": str(msg.sender_id),
            "username": sender.username if sender else None,
        },
        "content": msg.content,
        "type": msg.type,
        "time": msg.time,
        "createdAt": msg.created_at.isoformat() if msg.created_at else None,
    }


class ChatService:
    def __init__(self, db: Session, registry: ModerationRegistry = moderation_registry):
        self.db = db
        self.registry = registry

    def open_session(self, room_id: uuid.UUID, user_id: uuid.UUID) -> ChatSession:
        """Build a session; elevation comes from the user's role. Unknown users are not elevated."""
        user = self._read(lambda: user_crud.get_by_id(self.db, user_id=user_id), "user")
        elevated = settings.is_elevated_role(user.role) if user else False
        return ChatSession(room_id=room_id, user_id=user_id, elevated=elevated)

    # --- Messages ---

    def send_message(self, session: Optional[ChatSession], content: Optional[str]) -> ChatMessage:
        """
        Validate and persist a text message.

        Raises:
            ValidationError: no session, or empty content
            NotFound: the session's room no longer exists
            Forbidden: room locked for a non-elevated sender, or sender blocked
            PersistenceError: the insert failed; nothing was stored
        """
        if session is None or not session.room_id or not session.user_id:
            raise ValidationError(INVALID_MESSAGE, code="INVALID_MESSAGE")
        text = content.strip() if isinstance(content, str) else ""
        if not text:
            raise ValidationError(INVALID_MESSAGE, code="INVALID_MESSAGE")

        room = self._get_room(session.room_id)
        if room.locked and not session.elevated:
            raise Forbidden(CHAT_LOCKED, code="CHAT_LOCKED")
        if self.registry.is_blocked(session.room_id, session.user_id):
            raise Forbidden(SENDER_BLOCKED, code="USER_BLOCKED")

        try:
            msg = chat_message_crud.create_from_dict(
                self.db,
                obj_in={
                    "room_id": session.room_id,
                    "sender_id": session.user_id,
                    "content": text,
                    "type": MessageType.TEXT.value,
                },
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Failed to save chat message: %s", e)
            raise PersistenceError("could not send message")
        return msg

    # --- Moderation ---

    def block_user(self, session: Optional[ChatSession], room_id: uuid.UUID, target_user_id: uuid.UUID) -> ModerationResult:
        if self.authorize(session, "blockUser") is ModerationResult.DENIED:
            return ModerationResult.DENIED
        self.registry.block(room_id, target_user_id)
        return ModerationResult.AUTHORIZED

    def unblock_user(self, session: Optional[ChatSession], room_id: uuid.UUID, target_user_id: uuid.UUID) -> ModerationResult:
        if self.authorize(session, "unblockUser") is ModerationResult.DENIED:
            return ModerationResult.DENIED
        self.registry.unblock(room_id, target_user_id)
        return ModerationResult.AUTHORIZED

    def set_locked(self, session: Optional[ChatSession], room_id: uuid.UUID, locked: bool) -> ModerationResult:
        if self.authorize(session, "lockRoom" if locked else "unlockRoom") is ModerationResult.DENIED:
            return ModerationResult.DENIED
        room = self._get_room(room_id)
        self._persist(lambda: chat_room_crud.set_locked(self.db, room=room, locked=locked), "lock state")
        logger.info("Room %s %s by %s", room_id, "locked" if locked else "unlocked", session.user_id)
        return ModerationResult.AUTHORIZED

    def lock_room(self, session: Optional[ChatSession], room_id: uuid.UUID) -> ModerationResult:
        return self.set_locked(session, room_id, True)

    def unlock_room(self, session: Optional[ChatSession], room_id: uuid.UUID) -> ModerationResult:
        return self.set_locked(session, room_id, False)

    def pin_message(self, session: Optional[ChatSession], room_id: uuid.UUID, content: Optional[str]) -> ModerationResult:
        if self.authorize(session, "pinMessage") is ModerationResult.DENIED:
            return ModerationResult.DENIED
        text = content.strip() if isinstance(content, str) else ""
        if not text:
            raise ValidationError("Pinned message cannot be empty.", code="EMPTY_PIN")
        room = self._get_room(room_id)
        self._persist(lambda: chat_room_crud.set_pinned_message(self.db, room=room, content=text), "pinned message")
        return ModerationResult.AUTHORIZED

    def clear_pin(self, session: Optional[ChatSession], room_id: uuid.UUID) -> ModerationResult:
        if self.authorize(session, "clearPin") is ModerationResult.DENIED:
            return ModerationResult.DENIED
        room = self._get_room(room_id)
        self._persist(lambda: chat_room_crud.set_pinned_message(self.db, room=room, content=""), "pinned message")
        return ModerationResult.AUTHORIZED

    # --- Helpers ---

    @staticmethod
    def authorize(session: Optional[ChatSession], action: str) -> ModerationResult:
        """Moderation needs an elevated session."""
        if session is not None and session.elevated:
            return ModerationResult.AUTHORIZED
        logger.warning(
            "Denied %s for non-elevated user %s",
            action,
            session.user_id if session else None,
        )
        return ModerationResult.DENIED

    def _get_room(self, room_id: uuid.UUID) -> ChatRoom:
        room = self._read(lambda: chat_room_crud.get_by_id(self.db, room_id=room_id), "room")
        if not room:
            raise NotFound("Room")
        return room

    def _read(self, query: Callable[[], T], what: str) -> T:
        try:
            return query()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Failed to load %s: %s", what, e)
            raise PersistenceError(f"Failed to load {what}.")

    def _persist(self, write, what: str) -> None:
        try:
            write()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Failed to update %s: %s", what, e)
            raise PersistenceError(f"Failed to update {what}.")
