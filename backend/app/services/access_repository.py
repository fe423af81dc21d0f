"""
SQL implementation of the evaluator's read-only lookups.

Soft-deleted employees, clients and tasks are treated as missing.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.repository import Assignment, ResourceKind
from app.models import Client, ClientCategory, Employee, Specialization, Task


class SqlAccessRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve_department(self, kind: ResourceKind, resource_id: int) -> int | None:
        if kind == ResourceKind.EMPLOYEE:
            query = select(Employee.department_id).where(
                Employee.id == resource_id, Employee.deleted_at.is_(None),
            )
        elif kind == ResourceKind.CLIENT:
            # client → category → specialization → department
            query = (
                select(Specialization.department_id)
                .select_from(Client)
                .join(ClientCategory, Client.category_id == ClientCategory.id)
                .join(Specialization, ClientCategory.specialization_id == Specialization.id)
                .where(Client.id == resource_id, Client.deleted_at.is_(None))
            )
        else:
            # department of the task's assignee
            query = (
                select(Employee.department_id)
                .select_from(Task)
                .join(Employee, Task.assigned_to == Employee.id)
                .where(Task.id == resource_id, Task.deleted_at.is_(None))
            )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def resolve_assignment(self, kind: ResourceKind, resource_id: int) -> Assignment | None:
        if kind == ResourceKind.EMPLOYEE:
            result = await self.session.execute(
                select(Employee.id).where(Employee.id == resource_id, Employee.deleted_at.is_(None))
            )
            employee_id = result.scalar_one_or_none()
            return Assignment(assigned_employee_id=employee_id) if employee_id is not None else None

        if kind == ResourceKind.CLIENT:
            result = await self.session.execute(
                select(Client.assigned_employee_id)
                .where(Client.id == resource_id, Client.deleted_at.is_(None))
            )
            row = result.one_or_none()
            return Assignment(assigned_employee_id=row.assigned_employee_id) if row else None

        result = await self.session.execute(
            select(Task.assigned_to, Task.created_by)
            .where(Task.id == resource_id, Task.deleted_at.is_(None))
        )
        row = result.one_or_none()
        if row is None:
            return None
        return Assignment(assigned_employee_id=row.assigned_to, created_by=row.created_by)
