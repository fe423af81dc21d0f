"""Tests for the realtime hub, notification service and notification routes."""

import pytest
from sqlalchemy import select
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.main import app
from app.api.deps import get_db
from app.api.notifications import WS_AUTH_FAILED, _may_join
from app.auth.context import Actor
from app.auth.jwt import create_access_token
from app.auth.roles import Role
from app.models import Notification
from app.realtime.hub import NotificationHub, role_room, user_room
from app.services.notification_service import NotificationService, deliver_pending
from tests.conftest import make_auth_header
from tests.fakes import FakeWebSocket


# ── Hub ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestNotificationHub:
    async def test_register_joins_user_and_role_rooms(self):
        hub = NotificationHub()
        ws = FakeWebSocket()
        hub.register(ws, 12, Role.ACCOUNTANT)
        assert hub.rooms_of(ws) == {"user_12", "role_5"}
        assert hub.connection_count == 1

    async def test_send_to_user_and_role(self):
        hub = NotificationHub()
        accountant, manager = FakeWebSocket(), FakeWebSocket()
        hub.register(accountant, 1, Role.ACCOUNTANT)
        hub.register(manager, 2, Role.DIRECT_MANAGER)

        assert await hub.send_to_user(1, "notification", {"id": 7}) == 1
        assert await hub.send_to_role(Role.DIRECT_MANAGER, "payment_updated", {"id": 3}) == 1
        assert accountant.sent == [{"event": "notification", "data": {"id": 7}}]
        assert manager.sent == [{"event": "payment_updated", "data": {"id": 3}}]

    async def test_broadcast_reaches_everyone_once(self):
        hub = NotificationHub()
        sockets = [FakeWebSocket() for _ in range(3)]
        for i, ws in enumerate(sockets):
            hub.register(ws, i, Role.EMPLOYEE)
        assert await hub.broadcast("ping", {}) == 3
        assert all(len(ws.sent) == 1 for ws in sockets)

    async def test_dead_socket_is_dropped(self):
        hub = NotificationHub()
        dead = FakeWebSocket(fail=True)
        hub.register(dead, 4, Role.EMPLOYEE)
        assert await hub.send_to_user(4, "notification", {}) == 0
        assert hub.connection_count == 0
        assert hub.room_size(user_room(4)) == 0

    async def test_join_and_leave(self):
        hub = NotificationHub()
        ws = FakeWebSocket()
        hub.register(ws, 4, Role.EMPLOYEE)
        hub.join(ws, "project_alpha")
        assert hub.room_size("project_alpha") == 1
        hub.leave(ws, "project_alpha")
        assert hub.room_size("project_alpha") == 0
        assert "project_alpha" not in hub.rooms_of(ws)

    async def test_unregister_cleans_every_room(self):
        hub = NotificationHub()
        ws = FakeWebSocket()
        hub.register(ws, 4, Role.EMPLOYEE)
        hub.unregister(ws)
        assert hub.room_size(user_room(4)) == 0
        assert hub.room_size(role_room(Role.EMPLOYEE)) == 0


class TestRoomPolicy:
    actor = Actor(id=8, email="e@acme.com", role=Role.EMPLOYEE, employee_id=3)

    def test_own_rooms(self):
        assert _may_join(self.actor, "user_8")
        assert _may_join(self.actor, "role_4")

    def test_foreign_reserved_rooms(self):
        assert not _may_join(self.actor, "user_9")
        assert not _may_join(self.actor, "role_1")

    def test_named_rooms(self):
        assert _may_join(self.actor, "client_42")
        assert not _may_join(self.actor, "")


# ── Service ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestNotificationService:
    async def test_notify_user_persists_and_pushes(self, db_session, org):
        hub = NotificationHub()
        ws = FakeWebSocket()
        hub.register(ws, org.employee5.id, Role.EMPLOYEE)

        service = NotificationService(db_session, hub)
        notification = await service.notify_user(org.employee5.id, "Hello", "World", data={"k": 1})

        assert notification.id is not None
        assert ws.sent == []
        assert await deliver_pending(db_session) == 1
        assert ws.sent[0]["event"] == "notification"
        assert ws.sent[0]["data"]["title"] == "Hello"
        assert await service.unread_count(org.employee5.id) == 1

    async def test_push_failure_does_not_raise(self, db_session, org):
        hub = NotificationHub()
        hub.register(FakeWebSocket(fail=True), org.employee5.id, Role.EMPLOYEE)
        service = NotificationService(db_session, hub)
        notification = await service.notify_user(org.employee5.id, "Hello", "World")
        assert notification.id is not None
        assert await deliver_pending(db_session) == 1

    async def test_notify_employee_without_account(self, db_session, org):
        service = NotificationService(db_session, NotificationHub())
        assert await service.notify_employee(None, "t", "m") is None
        assert await service.notify_employee(9999, "t", "m") is None

    async def test_payment_update_reaches_finance_roles(self, db_session):
        hub = NotificationHub()
        sockets = {role: FakeWebSocket() for role in Role}
        for i, (role, ws) in enumerate(sockets.items()):
            hub.register(ws, 100 + i, role)
        await NotificationService(db_session, hub).push_payment_update({"id": 1})
        await deliver_pending(db_session)
        reached = {role for role, ws in sockets.items() if ws.sent}
        assert reached == {Role.OWNER, Role.DIRECT_MANAGER, Role.ACCOUNTANT}


@pytest.mark.asyncio
class TestPushesFollowCommit:
    async def _queue_notification(self, session_factory, org):
        hub = NotificationHub()
        ws = FakeWebSocket()
        hub.register(ws, org.employee5.id, Role.EMPLOYEE)
        session = get_db(session_factory)
        db = await session.__anext__()
        await NotificationService(db, hub).notify_user(org.employee5.id, "Task", "Assigned")
        return session, ws

    async def test_push_waits_for_commit(self, session_factory, org):
        session, ws = await self._queue_notification(session_factory, org)
        assert ws.sent == []

        with pytest.raises(StopAsyncIteration):
            await session.__anext__()
        assert [m["event"] for m in ws.sent] == ["notification"]

    async def test_rollback_drops_push(self, session_factory, org):
        session, ws = await self._queue_notification(session_factory, org)

        with pytest.raises(RuntimeError):
            await session.athrow(RuntimeError("handler failed"))
        assert ws.sent == []
        async with session_factory() as db:
            stored = (await db.execute(
                select(Notification).where(Notification.user_id == org.employee5.id)
            )).scalars().all()
        assert stored == []


# ── REST routes ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestNotificationRoutes:
    async def _seed(self, session_factory, user_id: int, count: int) -> list[int]:
        async with session_factory() as db:
            rows = [Notification(user_id=user_id, title=f"n{i}", message="m") for i in range(count)]
            db.add_all(rows)
            await db.commit()
            return [n.id for n in rows]

    async def test_list_own_only(self, client, org, session_factory):
        await self._seed(session_factory, org.employee5.id, 2)
        await self._seed(session_factory, org.employee7.id, 1)
        resp = await client.get("/api/notifications", headers=make_auth_header(org.employee5))
        assert resp.status_code == 200
        assert len(resp.json()["items"]) == 2
        assert resp.json()["unread_count"] == 2

    async def test_mark_read(self, client, org, session_factory):
        ids = await self._seed(session_factory, org.employee5.id, 2)
        headers = make_auth_header(org.employee5)
        resp = await client.put(f"/api/notifications/{ids[0]}/read", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["is_read"] is True

        unread = await client.get("/api/notifications?unread_only=true", headers=headers)
        assert [n["id"] for n in unread.json()["items"]] == [ids[1]]

    async def test_cannot_mark_someone_elses(self, client, org, session_factory):
        ids = await self._seed(session_factory, org.employee7.id, 1)
        resp = await client.put(f"/api/notifications/{ids[0]}/read", headers=make_auth_header(org.employee5))
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "NOTIFICATION_NOT_FOUND"

    async def test_mark_all_read(self, client, org, session_factory):
        await self._seed(session_factory, org.employee5.id, 3)
        headers = make_auth_header(org.employee5)
        resp = await client.put("/api/notifications/read-all", headers=headers)
        assert resp.json()["updated"] == 3
        listing = await client.get("/api/notifications", headers=headers)
        assert listing.json()["unread_count"] == 0


# ── WebSocket authentication ─────────────────────────────────────────────────

class TestWebSocketAuth:
    def test_missing_token_closes_with_4001(self):
        client = TestClient(app)
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws/notifications"):
                pass
        assert exc.value.code == WS_AUTH_FAILED

    def test_query_string_token_refused(self):
        token = create_access_token(1, "owner@acme.com", 1)
        client = TestClient(app)
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(f"/ws/notifications?token={token}"):
                pass
        assert exc.value.code == WS_AUTH_FAILED

    def test_invalid_subprotocol_token(self):
        client = TestClient(app)
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws/notifications", subprotocols=["bearer.not-a-jwt"]):
                pass
        assert exc.value.code == WS_AUTH_FAILED
