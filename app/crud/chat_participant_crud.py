"""
Chat participant CRUD.
"""
from typing import Any, Dict, Optional
import uuid
from sqlalchemy.orm import Session

from app.model.chat_participant import ChatParticipant
from app.crud.base import CRUDBase


class CRUDChatParticipant(CRUDBase[ChatParticipant, Dict[str, Any], Dict[str, Any]]):
    def get_by_room_and_user(
        self, db: Session, *, room_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[ChatParticipant]:
        return (
            db.query(self.model)
            .filter(
                self.model.room_id == room_id,
                self.model.user_id == user_id,
            )
            .first()
        )


chat_participant_crud = CRUDChatParticipant(ChatParticipant)
