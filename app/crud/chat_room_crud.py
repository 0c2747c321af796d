"""
Chat room CRUD.
"""
from typing import Any, Dict, List, Optional
import uuid
from sqlalchemy.orm import Session, joinedload

from app.model.chat_room import ChatRoom
from app.crud.base import CRUDBase


class CRUDChatRoom(CRUDBase[ChatRoom, Dict[str, Any], Dict[str, Any]]):
    def get_by_id(self, db: Session, *, room_id: uuid.UUID) -> Optional[ChatRoom]:
        return db.query(self.model).filter(self.model.id == room_id).first()

    def get_by_alias(self, db: Session, *, alias: str) -> Optional[ChatRoom]:
        return db.query(self.model).filter(self.model.alias == alias).first()

    def get_by_mission(self, db: Session, *, mission_id: uuid.UUID) -> Optional[ChatRoom]:
        return db.query(self.model).filter(self.model.mission_id == mission_id).first()

    def list_with_summaries(self, db: Session) -> List[ChatRoom]:
        """All rooms, oldest first, with creator and mission loaded."""
        return (
            db.query(self.model)
            .options(joinedload(self.model.creator), joinedload(self.model.mission))
            .order_by(self.model.created_at)
            .all()
        )

    def set_locked(self, db: Session, *, room: ChatRoom, locked: bool) -> ChatRoom:
        return self.update(db, db_obj=room, obj_in={"locked": locked})

    def set_pinned_message(self, db: Session, *, room: ChatRoom, content: str) -> ChatRoom:
        return self.update(db, db_obj=room, obj_in={"pinned_message": content})


chat_room_crud = CRUDChatRoom(ChatRoom)
