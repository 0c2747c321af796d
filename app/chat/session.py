"""
Per-connection chat session, fixed at join time.
"""
import uuid
from dataclasses import dataclass


@dataclass(frozen=True)
class ChatSession:
    """Which room and user a connection speaks for, and whether the user moderates."""
    room_id: uuid.UUID
    user_id: uuid.UUID
    elevated: bool = False
