from app.model.user import User
from app.model.mission import Mission
from app.model.chat_room import ChatRoom
from app.model.chat_participant import ChatParticipant
from app.model.chat_message import ChatMessage, MessageType

__all__ = ["User", "Mission", "ChatRoom", "ChatParticipant", "ChatMessage", "MessageType"]
