"""
Notifications API — stored notifications and the live websocket channel.

WebSocket authentication:
    The access token travels in the Sec-WebSocket-Protocol header as
    ``bearer.<token>``. Query-string tokens are refused. Any failure closes
    the socket with code 4001 before it is accepted.

Client messages on the socket:
    {"type": "join_room",  "room": "<name>"}
    {"type": "leave_room", "room": "<name>"}
    {"type": "ping"}
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.deps import (
    AuthenticationError,
    actor_from_user,
    authenticate_token,
    get_current_actor,
    get_db,
    get_hub,
    get_session_factory,
)
from app.auth.context import Actor
from app.realtime.hub import NotificationHub, role_room, user_room
from app.services.notification_service import NotificationService, notification_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notifications"])

WS_AUTH_FAILED = 4001
_RESERVED_ROOM_PREFIXES = ("user_", "role_")


# ── REST ─────────────────────────────────────────────────────────────────────

@router.get("/api/notifications")
async def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    hub: NotificationHub = Depends(get_hub),
):
    """The caller's own notifications, newest first."""
    service = NotificationService(db, hub)
    items = await service.list_for_user(actor.id, unread_only=unread_only, limit=limit, offset=offset)
    return {
        "items": [notification_to_dict(n) for n in items],
        "unread_count": await service.unread_count(actor.id),
    }


@router.put("/api/notifications/read-all")
async def mark_all_read(actor: Actor = Depends(get_current_actor),
                        db: AsyncSession = Depends(get_db),
                        hub: NotificationHub = Depends(get_hub)):
    updated = await NotificationService(db, hub).mark_all_read(actor.id)
    return {"updated": updated}


@router.put("/api/notifications/{notification_id}/read")
async def mark_read(notification_id: int,
                    actor: Actor = Depends(get_current_actor),
                    db: AsyncSession = Depends(get_db),
                    hub: NotificationHub = Depends(get_hub)):
    notification = await NotificationService(db, hub).mark_read(actor.id, notification_id)
    if notification is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "NOTIFICATION_NOT_FOUND", "message": "Notification not found"},
        )
    return notification_to_dict(notification)


# ── WebSocket ────────────────────────────────────────────────────────────────

def _subprotocol_token(websocket: WebSocket) -> tuple[str | None, str | None]:
    """Return (token, offered subprotocol) from a ``bearer.<token>`` subprotocol."""
    for proto in websocket.headers.get("sec-websocket-protocol", "").split(","):
        proto = proto.strip()
        if proto.startswith("bearer."):
            return proto[7:] or None, proto
    return None, None


def _may_join(actor: Actor, room: str) -> bool:
    """Personal and role rooms are only joinable by their own member."""
    if room.startswith(_RESERVED_ROOM_PREFIXES):
        return room in (user_room(actor.id), role_room(actor.role))
    return bool(room)


@router.websocket("/ws/notifications")
async def notifications_socket(
    websocket: WebSocket,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    if websocket.query_params.get("token"):
        logger.warning("WS auth via query param rejected; use Sec-WebSocket-Protocol instead")
        await websocket.close(code=WS_AUTH_FAILED, reason="Authentication required")
        return

    token, subprotocol = _subprotocol_token(websocket)
    try:
        async with session_factory() as db:
            actor = actor_from_user(await authenticate_token(token, db))
    except AuthenticationError as e:
        logger.info("WS authentication failed: %s", e.code)
        await websocket.close(code=WS_AUTH_FAILED, reason=e.message)
        return

    hub: NotificationHub = websocket.app.state.hub
    await websocket.accept(subprotocol=subprotocol)
    hub.register(websocket, actor.id, actor.role)
    logger.info("User connected: %s", actor.label)

    try:
        while True:
            message = await websocket.receive_json()
            msg_type = message.get("type") if isinstance(message, dict) else None
            room = str(message.get("room", "")) if isinstance(message, dict) else ""

            if msg_type == "ping":
                await websocket.send_json({"event": "pong", "data": {}})
            elif msg_type == "join_room":
                if _may_join(actor, room):
                    hub.join(websocket, room)
                    await websocket.send_json({"event": "joined", "data": {"room": room}})
                else:
                    logger.warning("Room join refused: %s -> %s", actor.label, room)
                    await websocket.send_json({
                        "event": "error",
                        "data": {"code": "ROOM_ACCESS_DENIED", "room": room},
                    })
            elif msg_type == "leave_room":
                hub.leave(websocket, room)
                await websocket.send_json({"event": "left", "data": {"room": room}})
            else:
                await websocket.send_json({
                    "event": "error",
                    "data": {"code": "UNKNOWN_MESSAGE", "type": msg_type},
                })
    except WebSocketDisconnect:
        pass
    finally:
        hub.unregister(websocket)
        logger.info("User disconnected: %s", actor.label)
