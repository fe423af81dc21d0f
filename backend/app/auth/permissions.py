"""
Permission constants — every resource/action pair the API guards.

Each permission follows the pattern `resource:action`. Roles are granted a
set of these through a PermissionMatrix (see app.auth.roles); the owner
bypasses the matrix entirely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Mapping

if TYPE_CHECKING:
    from app.auth.roles import Role


class Resource(str, Enum):
    USERS = "users"
    EMPLOYEES = "employees"
    DEPARTMENTS = "departments"
    CLIENTS = "clients"
    TASKS = "tasks"
    FINANCIAL = "financial"


class Action(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


class Permission(str, Enum):
    # ── Users ──
    USERS_CREATE = "users:create"
    USERS_READ = "users:read"
    USERS_UPDATE = "users:update"
    USERS_DELETE = "users:delete"

    # ── Employees ──
    EMPLOYEES_CREATE = "employees:create"
    EMPLOYEES_READ = "employees:read"
    EMPLOYEES_UPDATE = "employees:update"
    EMPLOYEES_DELETE = "employees:delete"

    # ── Departments & specializations ──
    DEPARTMENTS_CREATE = "departments:create"
    DEPARTMENTS_READ = "departments:read"
    DEPARTMENTS_UPDATE = "departments:update"
    DEPARTMENTS_DELETE = "departments:delete"

    # ── Clients ──
    CLIENTS_CREATE = "clients:create"
    CLIENTS_READ = "clients:read"
    CLIENTS_UPDATE = "clients:update"
    CLIENTS_DELETE = "clients:delete"

    # ── Tasks ──
    TASKS_CREATE = "tasks:create"
    TASKS_READ = "tasks:read"
    TASKS_UPDATE = "tasks:update"
    TASKS_DELETE = "tasks:delete"

    # ── Financial ──
    FINANCIAL_CREATE = "financial:create"
    FINANCIAL_READ = "financial:read"
    FINANCIAL_UPDATE = "financial:update"
    FINANCIAL_DELETE = "financial:delete"

    @classmethod
    def lookup(cls, resource: str, action: str) -> Permission | None:
        """Return the permission for a resource/action pair, or None if unknown."""
        try:
            return cls(f"{Resource(resource).value}:{Action(action).value}")
        except ValueError:
            return None


@dataclass(frozen=True)
class PermissionMatrix:
    """
    Immutable role → permissions mapping.

    Built once (from code defaults or a role-configuration source) and
    passed to the evaluator; nothing mutates it at runtime.
    """

    grants: Mapping[Role, frozenset[Permission]] = field(default_factory=dict)

    def __post_init__(self):
        frozen = {role: frozenset(perms) for role, perms in self.grants.items()}
        object.__setattr__(self, "grants", MappingProxyType(frozen))

    def allows(self, role: Role, resource: str, action: str) -> bool:
        """True iff matrix[role][resource][action] is granted. Unknown pairs are denied."""
        perm = Permission.lookup(resource, action)
        if perm is None:
            return False
        return perm in self.grants.get(role, frozenset())

    def permissions_for(self, role: Role) -> frozenset[Permission]:
        return self.grants.get(role, frozenset())

    def as_dict(self, role: Role) -> dict[str, dict[str, bool]]:
        """Render one role's grants in the nested {resource: {action: bool}} shape."""
        granted = self.permissions_for(role)
        return {
            resource.value: {
                action.value: Permission.lookup(resource.value, action.value) in granted
                for action in Action
            }
            for resource in Resource
        }

    @classmethod
    def from_config(cls, config: Mapping[int, Mapping[str, Mapping[str, bool]]]) -> PermissionMatrix:
        """
        Build a matrix from role configuration of the form
        ``{role_level: {resource: {action: true|false}}}``.

        Entries that are not literally ``True`` or that name an unknown
        resource/action are ignored (fail-closed).
        """
        from app.auth.roles import Role

        grants: dict[Role, set[Permission]] = {}
        for level, resources in config.items():
            role = Role(int(level))
            perms = grants.setdefault(role, set())
            for resource, actions in resources.items():
                for action, allowed in actions.items():
                    perm = Permission.lookup(resource, action)
                    if allowed is True and perm is not None:
                        perms.add(perm)
        return cls(grants)
