"""
Real-time notification hub.

Keeps the websocket connections of this process grouped into rooms:

    user_<id>      every socket of one user
    role_<level>   every socket of users holding that role

Route handlers push events through the hub after their own work has been
flushed; delivery is best-effort and a failed send only drops the socket.
"""

import logging
from collections import defaultdict

from starlette.websockets import WebSocket

logger = logging.getLogger(__name__)


def user_room(user_id: int) -> str:
    return f"user_{user_id}"


def role_room(role_level: int) -> str:
    return f"role_{int(role_level)}"


class NotificationHub:
    def __init__(self):
        self._rooms: dict[str, set[WebSocket]] = defaultdict(set)
        self._memberships: dict[WebSocket, set[str]] = defaultdict(set)

    def register(self, websocket: WebSocket, user_id: int, role_level: int) -> None:
        """Attach an accepted socket to its user and role rooms."""
        self.join(websocket, user_room(user_id))
        self.join(websocket, role_room(role_level))

    def unregister(self, websocket: WebSocket) -> None:
        for room in self._memberships.pop(websocket, set()):
            members = self._rooms.get(room)
            if members is None:
                continue
            members.discard(websocket)
            if not members:
                del self._rooms[room]

    def join(self, websocket: WebSocket, room: str) -> None:
        self._rooms[room].add(websocket)
        self._memberships[websocket].add(room)

    def leave(self, websocket: WebSocket, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.discard(websocket)
            if not members:
                del self._rooms[room]
        self._memberships.get(websocket, set()).discard(room)

    def rooms_of(self, websocket: WebSocket) -> set[str]:
        return set(self._memberships.get(websocket, set()))

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    @property
    def connection_count(self) -> int:
        return len(self._memberships)

    async def send_to_room(self, room: str, event: str, data: dict) -> int:
        """Send one event to every socket in `room`. Returns the number delivered."""
        return await self._deliver(list(self._rooms.get(room, ())), event, data)

    async def send_to_user(self, user_id: int, event: str, data: dict) -> int:
        return await self.send_to_room(user_room(user_id), event, data)

    async def send_to_role(self, role_level: int, event: str, data: dict) -> int:
        return await self.send_to_room(role_room(role_level), event, data)

    async def broadcast(self, event: str, data: dict) -> int:
        return await self._deliver(list(self._memberships), event, data)

    async def _deliver(self, sockets: list[WebSocket], event: str, data: dict) -> int:
        delivered = 0
        message = {"event": event, "data": data}
        for websocket in sockets:
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as exc:
                logger.debug("Dropping dead websocket after send failure: %s", exc)
                self.unregister(websocket)
        return delivered
