"""
Access Control Evaluator.

Decides Allow / Deny(reason) / NotFound for an actor against a role level,
a resource-type permission, the financial area, or a specific employee,
client or task record.

Resource-scoped checks run in a fixed order and stop at the first match:

    1. Owner / Direct Manager             → Allow
    2. Resource missing                   → NotFound
    3. Department / assignment rules      → Allow
    4. Nothing matched                    → Deny(reason)

Decisions depend only on (actor, resource, action) and whatever the
repository reports about the resource at call time. The only side effect
is a WARNING log line on denial.
"""

from __future__ import annotations

import logging

from app.auth.context import Actor
from app.auth.decisions import Decision, ReasonCode
from app.auth.permissions import Action, PermissionMatrix
from app.auth.repository import AccessRepository, ResourceKind
from app.auth.roles import Role, DEFAULT_PERMISSION_MATRIX

logger = logging.getLogger(__name__)

UNRESTRICTED_ROLES = frozenset({Role.OWNER, Role.DIRECT_MANAGER})
FINANCIAL_ROLES = frozenset({Role.OWNER, Role.DIRECT_MANAGER, Role.ACCOUNTANT})


class AccessEvaluator:
    """Pure rule evaluation over an injected repository and permission matrix."""

    def __init__(
        self,
        repository: AccessRepository,
        matrix: PermissionMatrix = DEFAULT_PERMISSION_MATRIX,
    ):
        self.repository = repository
        self.matrix = matrix

    # ── Role-level gate ──────────────────────────────────────────────────────

    def authorize(self, actor: Actor, min_level: int) -> Decision:
        """Allow iff the actor's role is at least as senior as `min_level`."""
        if actor.role <= min_level:
            return Decision.allow()
        return self._deny(actor, ReasonCode.INSUFFICIENT_PERMISSIONS, f"level<={min_level}")

    # ── Fine-grained permission check ────────────────────────────────────────

    def has_permission(self, actor: Actor, resource: str, action: str) -> bool:
        if actor.is_owner or actor.role == Role.OWNER:
            return True
        return self.matrix.allows(actor.role, resource, action)

    def check_permission(self, actor: Actor, resource: str, action: str) -> Decision:
        if self.has_permission(actor, resource, action):
            return Decision.allow()
        return self._deny(actor, ReasonCode.PERMISSION_DENIED, f"{action} {resource}")

    # ── Financial gate ───────────────────────────────────────────────────────

    def can_access_financial(self, actor: Actor) -> Decision:
        if actor.role in FINANCIAL_ROLES:
            return Decision.allow()
        return self._deny(actor, ReasonCode.FINANCIAL_ACCESS_DENIED, "financial")

    # ── Resource-scoped checks ───────────────────────────────────────────────

    async def can_access(
        self,
        actor: Actor,
        kind: ResourceKind,
        resource_id: int,
        action: str = Action.READ.value,
    ) -> Decision:
        """Dispatch to the employee / client / task check for `kind`.

        The rules do not vary by `action`.
        """
        if kind == ResourceKind.EMPLOYEE:
            return await self.can_access_employee(actor, resource_id)
        if kind == ResourceKind.CLIENT:
            return await self.can_access_client(actor, resource_id)
        return await self.can_access_task(actor, resource_id)

    async def can_access_employee(self, actor: Actor, employee_id: int) -> Decision:
        if actor.role in UNRESTRICTED_ROLES:
            return Decision.allow()

        target = await self.repository.resolve_assignment(ResourceKind.EMPLOYEE, employee_id)
        if target is None:
            return Decision.not_found(ReasonCode.EMPLOYEE_NOT_FOUND)

        if actor.role == Role.TEAM_LEADER:
            actor_department = await self._actor_department(actor)
            target_department = await self.repository.resolve_department(ResourceKind.EMPLOYEE, employee_id)
            if actor_department is not None and actor_department == target_department:
                return Decision.allow()
            return self._deny(actor, ReasonCode.DEPARTMENT_ACCESS_DENIED, f"employee {employee_id}")

        if actor.role == Role.EMPLOYEE:
            if actor.employee_id is not None and actor.employee_id == employee_id:
                return Decision.allow()
            return self._deny(actor, ReasonCode.SELF_ACCESS_ONLY, f"employee {employee_id}")

        return self._deny(actor, ReasonCode.ACCESS_DENIED, f"employee {employee_id}")

    async def can_access_client(self, actor: Actor, client_id: int) -> Decision:
        if actor.role in UNRESTRICTED_ROLES:
            return Decision.allow()

        client = await self.repository.resolve_assignment(ResourceKind.CLIENT, client_id)
        if client is None:
            return Decision.not_found(ReasonCode.CLIENT_NOT_FOUND)

        if actor.role == Role.TEAM_LEADER:
            actor_department = await self._actor_department(actor)
            client_department = await self.repository.resolve_department(ResourceKind.CLIENT, client_id)
            if actor_department is not None and actor_department == client_department:
                return Decision.allow()

        if actor.employee_id is not None and actor.employee_id == client.assigned_employee_id:
            return Decision.allow()

        return self._deny(actor, ReasonCode.CLIENT_ACCESS_DENIED, f"client {client_id}")

    async def can_access_task(self, actor: Actor, task_id: int) -> Decision:
        if actor.role in UNRESTRICTED_ROLES:
            return Decision.allow()

        task = await self.repository.resolve_assignment(ResourceKind.TASK, task_id)
        if task is None:
            return Decision.not_found(ReasonCode.TASK_NOT_FOUND)

        if task.created_by is not None and task.created_by == actor.id:
            return Decision.allow()
        if actor.employee_id is not None and actor.employee_id == task.assigned_employee_id:
            return Decision.allow()

        # Unassigned tasks fall through to a deny for team leaders.
        if actor.role == Role.TEAM_LEADER and task.assigned_employee_id is not None:
            actor_department = await self._actor_department(actor)
            assignee_department = await self.repository.resolve_department(ResourceKind.TASK, task_id)
            if actor_department is not None and actor_department == assignee_department:
                return Decision.allow()

        return self._deny(actor, ReasonCode.TASK_ACCESS_DENIED, f"task {task_id}")

    # ── Helpers ──────────────────────────────────────────────────────────────

    async def _actor_department(self, actor: Actor) -> int | None:
        if actor.employee_id is None:
            return None
        return await self.repository.resolve_department(ResourceKind.EMPLOYEE, actor.employee_id)

    def _deny(self, actor: Actor, reason: ReasonCode, target: str) -> Decision:
        logger.warning("Access denied: %s -> %s (%s)", actor.label, target, reason.value)
        return Decision.deny(reason)

