"""
User lookups (collaborator). Users are created by the auth service.
"""
from typing import Optional
import uuid
from sqlalchemy.orm import Session
from app.model.user import User
from app.crud.base import CRUDBase


class CRUDUser(CRUDBase[User, dict, dict]):
    """User-specific read operations."""

    def get_by_id(self, db: Session, *, user_id: uuid.UUID) -> Optional[User]:
        return self.get(db, user_id)


user_crud = CRUDUser(User)
