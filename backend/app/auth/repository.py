"""
Read-only lookups the evaluator needs about organizational position.

The evaluator only ever asks two questions:
- which department does this employee / client / task belong to?
- who is this resource assigned to (and who created it)?

`SqlAccessRepository` in app.services.access_repository answers them from
the database; tests use an in-memory implementation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol


class ResourceKind(str, Enum):
    EMPLOYEE = "employee"
    CLIENT = "client"
    TASK = "task"


@dataclass(frozen=True)
class Assignment:
    """Assignment metadata for an existing resource.

    For an employee, `assigned_employee_id` is the employee itself.
    `created_by` is a user id and is only populated for tasks.
    """
    assigned_employee_id: int | None = None
    created_by: int | None = None


class AccessRepository(Protocol):
    async def resolve_department(self, kind: ResourceKind, resource_id: int) -> int | None:
        """Department id of the resource, or None if it has none (or doesn't exist)."""
        ...

    async def resolve_assignment(self, kind: ResourceKind, resource_id: int) -> Assignment | None:
        """Assignment metadata, or None if the resource doesn't exist."""
        ...
