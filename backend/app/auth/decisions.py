"""
Authorization outcomes.

The evaluator never raises to signal a denial; it returns a Decision that
the request layer turns into a response (see `enforce()` in app.api.deps).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Outcome(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    NOT_FOUND = "not_found"


class ReasonCode(str, Enum):
    # ── Authentication (handled before any decision is made) ──
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"

    # ── Role / permission gates ──
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    FINANCIAL_ACCESS_DENIED = "FINANCIAL_ACCESS_DENIED"

    # ── Resource-scoped checks ──
    DEPARTMENT_ACCESS_DENIED = "DEPARTMENT_ACCESS_DENIED"
    SELF_ACCESS_ONLY = "SELF_ACCESS_ONLY"
    CLIENT_ACCESS_DENIED = "CLIENT_ACCESS_DENIED"
    TASK_ACCESS_DENIED = "TASK_ACCESS_DENIED"
    ACCESS_DENIED = "ACCESS_DENIED"

    # ── Missing resources ──
    EMPLOYEE_NOT_FOUND = "EMPLOYEE_NOT_FOUND"
    CLIENT_NOT_FOUND = "CLIENT_NOT_FOUND"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"


MESSAGES: dict[ReasonCode, str] = {
    ReasonCode.NOT_AUTHENTICATED: "User not authenticated.",
    ReasonCode.INSUFFICIENT_PERMISSIONS: "Access denied. Insufficient permissions.",
    ReasonCode.PERMISSION_DENIED: "Access denied. You don't have permission for this action.",
    ReasonCode.FINANCIAL_ACCESS_DENIED: "Access denied. Financial data is restricted to authorized personnel only.",
    ReasonCode.DEPARTMENT_ACCESS_DENIED: "Access denied. You can only access employees from your department.",
    ReasonCode.SELF_ACCESS_ONLY: "Access denied. You can only access your own data.",
    ReasonCode.CLIENT_ACCESS_DENIED: "Access denied. You can only access clients assigned to you or in your department.",
    ReasonCode.TASK_ACCESS_DENIED: "Access denied. You can only access your own tasks or tasks in your department.",
    ReasonCode.ACCESS_DENIED: "Access denied.",
    ReasonCode.EMPLOYEE_NOT_FOUND: "Employee not found.",
    ReasonCode.CLIENT_NOT_FOUND: "Client not found.",
    ReasonCode.TASK_NOT_FOUND: "Task not found.",
}


@dataclass(frozen=True)
class Decision:
    outcome: Outcome
    reason: ReasonCode | None = None

    @classmethod
    def allow(cls) -> Decision:
        return ALLOW

    @classmethod
    def deny(cls, reason: ReasonCode) -> Decision:
        return cls(Outcome.DENY, reason)

    @classmethod
    def not_found(cls, reason: ReasonCode) -> Decision:
        return cls(Outcome.NOT_FOUND, reason)

    @property
    def allowed(self) -> bool:
        return self.outcome is Outcome.ALLOW

    @property
    def message(self) -> str:
        if self.reason is None:
            return ""
        return MESSAGES.get(self.reason, "Access denied.")


ALLOW = Decision(Outcome.ALLOW)
