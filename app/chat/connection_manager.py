"""
In-memory pub/sub for chat WebSockets: a room has a set of subscribed
connections; join adds to it, disconnect removes from it, broadcast walks it.
"""
import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


def encode_event(event: str, payload: Any, room_id: Optional[uuid.UUID] = None) -> str:
    return json.dumps({
        "event": event,
        "room_id": str(room_id) if room_id else None,
        "payload": payload,
    }, default=str)


class ConnectionManager:
    """Tracks WebSocket connections per room and broadcasts events."""

    def __init__(self) -> None:
        # room_id -> set of WebSocket
        self._rooms: Dict[uuid.UUID, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, websocket: WebSocket, room_id: uuid.UUID) -> None:
        async with self._lock:
            self._rooms.setdefault(room_id, set()).add(websocket)
        logger.debug("Subscribed ws to room %s", room_id)

    async def unsubscribe(self, websocket: WebSocket, room_id: uuid.UUID) -> None:
        async with self._lock:
            if room_id in self._rooms:
                self._rooms[room_id].discard(websocket)
                if not self._rooms[room_id]:
                    del self._rooms[room_id]
        logger.debug("Unsubscribed ws from room %s", room_id)

    def subscriber_count(self, room_id: uuid.UUID) -> int:
        return len(self._rooms.get(room_id) or ())

    async def send_personal(
        self,
        websocket: WebSocket,
        event: str,
        payload: Any,
        room_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """Send to one connection. A closed socket is logged, not raised."""
        try:
            await websocket.send_text(encode_event(event, payload, room_id))
            return True
        except Exception as e:
            logger.warning("Send to connection failed: %s", e)
            return False

    async def broadcast_to_room(
        self,
        room_id: uuid.UUID,
        event: str,
        payload: Any,
    ) -> int:
        """Send to every connection subscribed to this room. Returns the number of deliveries."""
        msg = encode_event(event, payload, room_id)
        async with self._lock:
            sockets = set(self._rooms.get(room_id) or [])
        delivered = 0
        dead = []
        for ws in sockets:
            try:
                await ws.send_text(msg)
                delivered += 1
            except Exception as e:
                logger.warning("Broadcast send failed: %s", e)
                dead.append(ws)
        if dead:
            async with self._lock:
                for ws in dead:
                    if room_id in self._rooms:
                        self._rooms[room_id].discard(ws)
                if room_id in self._rooms and not self._rooms[room_id]:
                    del self._rooms[room_id]
        return delivered

    def clear(self) -> None:
        self._rooms.clear()


connection_manager = ConnectionManager()
