"""
Chat room model. General room (alias) or one room per mission.
"""
from datetime import datetime, timezone

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
import uuid
from app.core.database import Base


class ChatRoom(Base):
    __tablename__ = "chat_rooms"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    alias = Column(String, unique=True, nullable=True)  # "general" for the shared room
    mission_id = Column(Uuid(as_uuid=True), ForeignKey("missions.id", ondelete="CASCADE"), unique=True, nullable=True)
    created_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    pinned_message = Column(String, nullable=False, default="")
    locked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    mission = relationship("Mission")
    creator = relationship("User", foreign_keys=[created_by])
    participants = relationship(
        "ChatParticipant",
        back_populates="room",
        cascade="all, delete-orphan",
        order_by="ChatParticipant.joined_at",
    )
    messages = relationship("ChatMessage", back_populates="room", cascade="all, delete-orphan")

    @property
    def participant_ids(self) -> list[uuid.UUID]:
        return [p.user_id for p in self.participants]
