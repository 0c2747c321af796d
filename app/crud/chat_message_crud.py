"""
Chat message CRUD. Append-only per room.
"""
from typing import Any, Dict, List
import uuid
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import func

from app.model.chat_message import ChatMessage
from app.crud.base import CRUDBase


class CRUDChatMessage(CRUDBase[ChatMessage, Dict[str, Any], Dict[str, Any]]):
    def list_by_room(self, db: Session, *, room_id: uuid.UUID) -> List[ChatMessage]:
        """Full history of a room, oldest first, senders loaded."""
        return (
            db.query(self.model)
            .options(joinedload(self.model.sender))
            .filter(self.model.room_id == room_id)
            .order_by(self.model.created_at.asc())
            .all()
        )

    def count_by_room(self, db: Session, *, room_id: uuid.UUID) -> int:
        return (
            db.query(func.count(self.model.id))
            .filter(self.model.room_id == room_id)
            .scalar()
            or 0
        )


chat_message_crud = CRUDChatMessage(ChatMessage)
