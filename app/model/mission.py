"""
Mission model. Mission CRUD lives elsewhere; chat rooms only reference it.
"""
from sqlalchemy import Column, String, DateTime, Uuid
from sqlalchemy.sql import func
import uuid
from app.core.database import Base


class Mission(Base):
    __tablename__ = "missions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
