"""
Chat schemas: rooms and messages. Wire names are camelCase.
"""
from datetime import datetime
from typing import List, Optional
import uuid
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# --- Summaries ---


class UserSummary(CamelModel):
    id: uuid.UUID
    username: str
    email: Optional[str] = None


class SenderSummary(CamelModel):
    id: uuid.UUID
    username: Optional[str] = None
    avatar_url: Optional[str] = None


class MissionSummary(CamelModel):
    id: uuid.UUID
    title: str


# --- Room ---


class RoomCreateBody(CamelModel):
    """Body for POST /chatrooms. Title is validated by the room directory (400 when blank)."""
    title: Optional[str] = None
    mission_id: Optional[str] = None


class RoomUpdateBody(CamelModel):
    """Body for PATCH /chatrooms/{id}. Empty pinnedMessage clears the pin."""
    pinned_message: Optional[str] = None
    locked: Optional[bool] = None


class RoomResponse(CamelModel):
    """Single room for GET room."""
    id: uuid.UUID
    title: str
    mission_id: Optional[uuid.UUID] = None
    created_by: Optional[uuid.UUID] = None
    pinned_message: str = ""
    locked: bool = False
    participants: List[uuid.UUID] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class RoomListItem(CamelModel):
    """Room in list with creator and mission summaries."""
    id: uuid.UUID
    title: str
    mission_id: Optional[uuid.UUID] = None
    mission: Optional[MissionSummary] = None
    created_by: Optional[uuid.UUID] = None
    creator: Optional[UserSummary] = None
    pinned_message: str = ""
    locked: bool = False
    created_at: Optional[datetime] = None


class RoomCreatedResponse(CamelModel):
    message: str
    room: RoomResponse


class RoomDebugResponse(CamelModel):
    valid: bool
    exists: Optional[bool] = None
    title: Optional[str] = None
    message_count: Optional[int] = None
    locked: Optional[bool] = None


# --- Message ---

class MessageCreateBody(CamelModel):
    """Body for POST /chatrooms/{id}/messages. Blank content is rejected with 400."""
    content: Optional[str] = Field(default=None, max_length=10_000)


class MessageResponse(CamelModel):
    """Single message with its sender."""
    id: uuid.UUID
    room_id: uuid.UUID
    sender: SenderSummary
    content: str
    type: str
    time: str
    created_at: datetime
