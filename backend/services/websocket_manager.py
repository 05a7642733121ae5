# websocket_manager.py
import logging
from collections import defaultdict
from typing import Any, Dict, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class BroadcastManager:
    """
    Groups WebSocket clients into rooms keyed by provider call id.
    Messages go out as {"type": event, "callId": room, "data": payload}.
    """

    def __init__(self):
        # room -> sockets
        self.rooms: Dict[str, Set[WebSocket]] = defaultdict(set)
        # ws -> rooms it joined
        self.memberships: Dict[WebSocket, Set[str]] = defaultdict(set)

    async def connect(self, ws: WebSocket):
        await ws.accept()
        self.memberships[ws] = set()

    async def disconnect(self, ws: WebSocket):
        for room in self.memberships.pop(ws, set()):
            members = self.rooms.get(room)
            if members is None:
                continue
            members.discard(ws)
            if not members:
                del self.rooms[room]

    async def join(self, ws: WebSocket, room: str):
        self.rooms[room].add(ws)
        self.memberships[ws].add(room)

    async def leave(self, ws: WebSocket, room: str):
        if ws in self.memberships:
            self.memberships[ws].discard(room)
        members = self.rooms.get(room)
        if members is not None:
            members.discard(ws)
            if not members:
                del self.rooms[room]

    def room_size(self, room: str) -> int:
        return len(self.rooms.get(room, ()))

    async def broadcast(self, room: str, event: str, data: Any):
        """
        Only send to clients joined to this room.
        """
        message = {"type": event, "callId": room, "data": data}
        dead = []
        for ws in list(self.rooms.get(room, ())):
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.warning(f"[WS] Dropping client in room {room}: {e}")
                dead.append(ws)

        for ws in dead:
            await self.disconnect(ws)

    async def close_all(self):
        for ws in list(self.memberships):
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"[WS] Close failed during shutdown: {e}")
        self.rooms.clear()
        self.memberships.clear()
