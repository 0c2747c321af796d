"""
In-memory registry of users blocked per room.

Blocks are process-local and start empty: a restart lifts every block.
Lock and pin, by contrast, are persisted on the room row.
"""
import logging
import threading
import uuid
from typing import Dict, Set

logger = logging.getLogger(__name__)


class ModerationRegistry:
    """room_id -> set of blocked user ids. Each operation is a single atomic set update."""

    def __init__(self) -> None:
        self._blocked: Dict[uuid.UUID, Set[uuid.UUID]] = {}
        self._lock = threading.Lock()

    def block(self, room_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Returns True if the user was not blocked before."""
        with self._lock:
            blocked = self._blocked.setdefault(room_id, set())
            added = user_id not in blocked
            blocked.add(user_id)
        logger.info("User %s blocked in room %s", user_id, room_id)
        return added

    def unblock(self, room_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Returns True if the user was blocked before."""
        with self._lock:
            blocked = self._blocked.get(room_id)
            if not blocked or user_id not in blocked:
                return False
            blocked.discard(user_id)
            if not blocked:
                del self._blocked[room_id]
        logger.info("User %s unblocked in room %s", user_id, room_id)
        return True

    def is_blocked(self, room_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        with self._lock:
            return user_id in self._blocked.get(room_id, ())

    def blocked_users(self, room_id: uuid.UUID) -> Set[uuid.UUID]:
        with self._lock:
            return set(self._blocked.get(room_id, ()))

    def clear(self) -> None:
        with self._lock:
            self._blocked.clear()


moderation_registry = ModerationRegistry()
