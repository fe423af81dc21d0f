"""
Notification Service

Persists per-user notifications and pushes them over the realtime hub.
The stored row is the source of truth; the push is best-effort and is held
on the session until the request transaction commits (see `get_db`).
"""

import logging
from datetime import datetime

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.roles import Role
from app.models import Employee, Notification
from app.realtime.hub import NotificationHub

logger = logging.getLogger(__name__)

# Roles that receive live payment events
PAYMENT_AUDIENCE = (Role.OWNER, Role.DIRECT_MANAGER, Role.ACCOUNTANT)

# session.info key for pushes waiting on the commit
PENDING_PUSHES = "pending_pushes"


async def deliver_pending(session: AsyncSession) -> int:
    """Send the pushes queued on a session. Call only after a successful commit."""
    pending = session.info.pop(PENDING_PUSHES, [])
    for send in pending:
        try:
            await send()
        except Exception:
            logger.exception("Realtime push failed")
    return len(pending)


def discard_pending(session: AsyncSession) -> None:
    dropped = session.info.pop(PENDING_PUSHES, [])
    if dropped:
        logger.info("Dropped %d realtime push(es) after rollback", len(dropped))


def notification_to_dict(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data or {},
        "is_read": notification.is_read,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
        "read_at": notification.read_at.isoformat() if notification.read_at else None,
    }


class NotificationService:
    def __init__(self, session: AsyncSession, hub: NotificationHub):
        self.session = session
        self.hub = hub

    async def notify_user(
        self,
        user_id: int,
        title: str,
        message: str,
        type: str = "info",
        data: dict | None = None,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            data=data or {},
        )
        self.session.add(notification)
        await self.session.flush()
        await self.session.refresh(notification)

        payload = notification_to_dict(notification)
        self._defer(lambda: self.hub.send_to_user(user_id, "notification", payload))
        return notification

    async def notify_employee(self, employee_id: int | None, title: str, message: str,
                              type: str = "info", data: dict | None = None) -> Notification | None:
        """Notify the user account behind an employee profile, if there is one."""
        if employee_id is None:
            return None
        user_id = (await self.session.execute(
            select(Employee.user_id).where(Employee.id == employee_id)
        )).scalar_one_or_none()
        if user_id is None:
            return None
        return await self.notify_user(user_id, title, message, type=type, data=data)

    async def push_task_update(self, employee_id: int | None, task_data: dict) -> None:
        if employee_id is None:
            return
        user_id = (await self.session.execute(
            select(Employee.user_id).where(Employee.id == employee_id)
        )).scalar_one_or_none()
        if user_id is not None:
            self._defer(lambda: self.hub.send_to_user(user_id, "task_updated", task_data))

    async def push_payment_update(self, payment_data: dict) -> None:
        for role in PAYMENT_AUDIENCE:
            self._defer(lambda role=role: self.hub.send_to_role(role, "payment_updated", payment_data))

    async def list_for_user(self, user_id: int, unread_only: bool = False,
                            limit: int = 50, offset: int = 0) -> list[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        query = query.order_by(Notification.id.desc()).offset(offset).limit(limit)
        return list((await self.session.execute(query)).scalars())

    async def unread_count(self, user_id: int) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        )
        return result.scalar() or 0

    async def mark_read(self, user_id: int, notification_id: int) -> Notification | None:
        notification = (await self.session.execute(
            select(Notification).where(
                Notification.id == notification_id, Notification.user_id == user_id,
            )
        )).scalar_one_or_none()
        if notification is None:
            return None
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = datetime.utcnow()
            await self.session.flush()
        return notification

    async def mark_all_read(self, user_id: int) -> int:
        result = await self.session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=datetime.utcnow())
        )
        return result.rowcount or 0

    def _defer(self, send) -> None:
        self.session.info.setdefault(PENDING_PUSHES, []).append(send)
