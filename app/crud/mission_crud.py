"""
Mission lookups (collaborator). Used to derive mission room titles.
"""
from typing import Optional
import uuid
from sqlalchemy.orm import Session

from app.model.mission import Mission
from app.crud.base import CRUDBase


class CRUDMission(CRUDBase[Mission, dict, dict]):
    def get_by_id(self, db: Session, *, mission_id: uuid.UUID) -> Optional[Mission]:
        return self.get(db, mission_id)


mission_crud = CRUDMission(Mission)
