"""
Room directory: turns a room identifier, the "general" alias or a mission id
into a persisted ChatRoom, creating the room on first access.

Uniqueness of the general room and of the per-mission room is enforced by
unique columns; a creator that loses a race rolls back and re-reads the
winner's row, so every caller ends up with the same room. Explicit creation
refuses the general title without a mission, so "Chat General" stays unique.
"""
import logging
import re
import uuid
from typing import Any, Callable, Dict, Optional, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    Conflict,
    InvalidIdentifier,
    NotFound,
    PersistenceError,
    ValidationError,
)
from app.crud import chat_participant_crud, chat_room_crud, mission_crud, user_crud
from app.model.chat_room import ChatRoom

logger = logging.getLogger(__name__)

T = TypeVar("T")

# canonical 8-4-4-4-12 or bare 32-char hex; no braces, no urn: prefix
ROOM_ID_PATTERN = re.compile(
    r"[0-9a-fA-F]{32}|[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}"
)


def parse_room_id(identifier: Any) -> uuid.UUID:
    """Parse a durable room id (canonical or 32-char hex UUID)."""
    if isinstance(identifier, uuid.UUID):
        return identifier
    if not isinstance(identifier, str) or not ROOM_ID_PATTERN.fullmatch(identifier):
        raise InvalidIdentifier(str(identifier))
    return uuid.UUID(identifier)


def is_valid_room_id(identifier: Any) -> bool:
    try:
        parse_room_id(identifier)
    except InvalidIdentifier:
        return False
    return True


def is_general_alias(identifier: Any) -> bool:
    return isinstance(identifier, str) and identifier == settings.GENERAL_ROOM_ALIAS


class RoomDirectory:
    """Resolves and creates chat rooms."""

    def __init__(self, db: Session):
        self.db = db

    def resolve(self, identifier: str) -> ChatRoom:
        """Resolve a room id or the general alias. Raises NotFound / InvalidIdentifier."""
        if is_general_alias(identifier):
            return self.general_room()
        room_id = parse_room_id(identifier)
        room = self._read(lambda: chat_room_crud.get_by_id(self.db, room_id=room_id))
        if not room:
            raise NotFound("Room")
        return room

    def general_room(self) -> ChatRoom:
        """The shared general room; created lazily with no creator and no participants."""
        alias = settings.GENERAL_ROOM_ALIAS
        room = self._read(lambda: chat_room_crud.get_by_alias(self.db, alias=alias))
        if room:
            return room
        return self._create_or_reload(
            {"title": settings.GENERAL_ROOM_TITLE, "alias": alias, "created_by": None},
            lambda: chat_room_crud.get_by_alias(self.db, alias=alias),
        )

    def resolve_for_mission(self, mission_or_alias: str, user_id: Optional[uuid.UUID]) -> ChatRoom:
        """Join-time resolution: the general room, or the (single) room of a mission."""
        if is_general_alias(mission_or_alias):
            return self.general_room()
        try:
            mission_id = uuid.UUID(str(mission_or_alias))
        except ValueError:
            raise NotFound("Mission", message=f"'{mission_or_alias}' is not a valid mission id.")

        room = self._read(lambda: chat_room_crud.get_by_mission(self.db, mission_id=mission_id))
        if room:
            return room

        mission = self._read(lambda: mission_crud.get_by_id(self.db, mission_id=mission_id))
        if not mission:
            raise NotFound("Mission")
        creator = self._read(lambda: user_crud.get_by_id(self.db, user_id=user_id)) if user_id else None
        return self._create_or_reload(
            {
                "title": f"{settings.MISSION_ROOM_TITLE_PREFIX}: {mission.title}",
                "mission_id": mission.id,
                "created_by": creator.id if creator else None,
            },
            lambda: chat_room_crud.get_by_mission(self.db, mission_id=mission_id),
        )

    def create_room(
        self,
        *,
        title: Optional[str],
        mission_id: Optional[str],
        creator_id: uuid.UUID,
    ) -> ChatRoom:
        """
        Explicit creation from the HTTP API; the creator becomes the first participant.

        The general room's title is reserved for rooms without a mission: there is
        only one Chat General, and it is reached through the "general" alias.
        """
        title = (title or "").strip()
        if not title:
            raise ValidationError("Room title is required.", code="MISSING_TITLE")

        mission_uuid = None
        if mission_id:
            try:
                mission_uuid = uuid.UUID(str(mission_id))
            except ValueError:
                raise ValidationError("missionId must be a valid id.", code="INVALID_MISSION_ID")
            if not self._read(lambda: mission_crud.get_by_id(self.db, mission_id=mission_uuid)):
                raise NotFound("Mission")
            if self._read(lambda: chat_room_crud.get_by_mission(self.db, mission_id=mission_uuid)):
                raise Conflict("This mission already has a chat room.", code="ROOM_EXISTS")
        elif title == settings.GENERAL_ROOM_TITLE:
            raise Conflict(
                f"'{title}' is the general room; join it with '{settings.GENERAL_ROOM_ALIAS}'.",
                code="ROOM_EXISTS",
            )

        try:
            room = chat_room_crud.create_from_dict(
                self.db,
                obj_in={"title": title, "mission_id": mission_uuid, "created_by": creator_id},
            )
        except IntegrityError:
            self.db.rollback()
            raise Conflict("This mission already has a chat room.", code="ROOM_EXISTS")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Failed to create chat room: %s", e)
            raise PersistenceError("Failed to create room.")
        logger.info("Chat room created: %s (%s)", room.id, room.title)
        self.add_participant(room, creator_id)
        return room

    def add_participant(self, room: ChatRoom, user_id: uuid.UUID) -> None:
        """Append user to the room's participants if not already there. Unknown users are skipped."""
        if self._read(lambda: chat_participant_crud.get_by_room_and_user(self.db, room_id=room.id, user_id=user_id)):
            return
        if not self._read(lambda: user_crud.get_by_id(self.db, user_id=user_id)):
            return
        try:
            chat_participant_crud.create_from_dict(
                self.db, obj_in={"room_id": room.id, "user_id": user_id}
            )
        except IntegrityError:
            # concurrent join already added it
            self.db.rollback()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Failed to add participant: %s", e)
            raise PersistenceError("Failed to join room.")
        self._read(lambda: self.db.refresh(room))

    def _read(self, query: Callable[[], T]) -> T:
        """Run a lookup; a storage failure becomes PersistenceError."""
        try:
            return query()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Room lookup failed: %s", e)
            raise PersistenceError("Failed to load room.")

    def _create_or_reload(
        self,
        obj_in: Dict[str, Any],
        reload: Callable[[], Optional[ChatRoom]],
    ) -> ChatRoom:
        try:
            room = chat_room_crud.create_from_dict(self.db, obj_in=obj_in)
        except IntegrityError:
            self.db.rollback()
            room = self._read(reload)
            if room is None:
                logger.error("Room creation conflicted but no existing room found: %s", obj_in)
                raise PersistenceError("Failed to create room.")
            return room
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Failed to create chat room: %s", e)
            raise PersistenceError("Failed to create room.")
        logger.info("Chat room created: %s (%s)", room.id, room.title)
        return room
