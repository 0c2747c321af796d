"""
Chat message model. One immutable message in a room.
"""
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
import uuid
from app.core.database import Base


class MessageType(str, Enum):
    """Kind of message. Only TEXT is produced by the chat itself."""
    TEXT = "text"
    SYSTEM = "system"
    EMOJI = "emoji"


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    room_id = Column(Uuid(as_uuid=True), ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    type = Column(String, nullable=False, default=MessageType.TEXT.value)
    # Python-side default keeps sub-second precision for per-room ordering
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), index=True)

    room = relationship("ChatRoom", back_populates="messages")
    sender = relationship("User")

    @property
    def time(self) -> str:
        """Display time, HH:MM:SS."""
        return self.created_at.strftime("%H:%M:%S") if self.created_at else ""
