import logging
from collections import defaultdict
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


def forum_room(event_id: int) -> str:
    return f"forum_{event_id}"


def attendance_room(event_id: int) -> str:
    return f"attendance_{event_id}"


class ConnectionManager:
    """Named rooms of live sockets. Delivery is best effort to whoever is connected."""

    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = defaultdict(set)

    async def connect(self, room: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.rooms[room].add(websocket)

    def disconnect(self, room: str, websocket: WebSocket) -> None:
        members = self.rooms.get(room)
        if not members:
            return
        members.discard(websocket)
        if not members:
            self.rooms.pop(room, None)

    def room_size(self, room: str) -> int:
        return len(self.rooms.get(room, ()))

    async def broadcast(self, room: str, event: str, data: Any, exclude: Optional[WebSocket] = None) -> None:
        frame = {"event": event, "data": jsonable_encoder(data)}
        for websocket in list(self.rooms.get(room, ())):
            if websocket is exclude:
                continue
            try:
                await websocket.send_json(frame)
            except Exception as exc:
                logger.warning("Dropping socket from %s: %s", room, exc)
                self.disconnect(room, websocket)


manager = ConnectionManager()


async def publish(room: str, event: str, data: Any) -> None:
    """Background-task entry point for broadcasting after a request commits."""
    await manager.broadcast(room, event, data)
