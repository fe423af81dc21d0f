"""
Audit Service — system_logs trail for user-initiated actions.

Audit entries are written alongside the request's own changes. They are a
record of what happened, not a gate: authorization never reads them.
"""

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import SystemLog


class AuditService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def log_event(
        self,
        user_id: int | None,
        action: str,
        resource_type: str | None = None,
        resource_id: int | str | None = None,
        details: dict | None = None,
        ip_address: str | None = None,
    ) -> SystemLog:
        """
        Write an audit entry.

        Args:
            user_id: acting user, None for system actions
            action: e.g. "LOGIN", "CLIENT_CREATE", "TASK_STATUS"
            resource_type: "user", "client", "task", ...
            resource_id: id of the affected resource
            details: free-form event details
            ip_address: caller address, when known
        """
        entry = SystemLog(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            ip_address=ip_address,
            details=details or {},
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def log_login(self, user_id: int, ip_address: str | None, user_agent: str | None) -> SystemLog:
        return await self.log_event(
            user_id, "LOGIN", "user", user_id,
            details={"user_agent": user_agent}, ip_address=ip_address,
        )

    async def log_logout(self, user_id: int, ip_address: str | None) -> SystemLog:
        return await self.log_event(user_id, "LOGOUT", "user", user_id, ip_address=ip_address)

    async def log_password_change(self, user_id: int, ip_address: str | None) -> SystemLog:
        return await self.log_event(user_id, "PASSWORD_CHANGE", "user", user_id, ip_address=ip_address)

    async def get_entries(
        self,
        user_id: int | None = None,
        action: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[SystemLog]:
        """Query audit entries with optional filters, newest first."""
        query = self._filtered(select(SystemLog), user_id, action, resource_type, resource_id)
        query = query.order_by(SystemLog.id.desc()).offset(offset).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars())

    async def get_entry_count(
        self,
        user_id: int | None = None,
        action: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
    ) -> int:
        query = self._filtered(
            select(func.count()).select_from(SystemLog), user_id, action, resource_type, resource_id,
        )
        result = await self.session.execute(query)
        return result.scalar() or 0

    @staticmethod
    def _filtered(query, user_id, action, resource_type, resource_id):
        if user_id is not None:
            query = query.where(SystemLog.user_id == user_id)
        if action:
            query = query.where(SystemLog.action == action)
        if resource_type:
            query = query.where(SystemLog.resource_type == resource_type)
        if resource_id:
            query = query.where(SystemLog.resource_id == resource_id)
        return query
