"""
Actor — the "who is asking" half of every authorization decision.

Every authenticated request resolves to an Actor, loaded fresh from the
store by `get_current_actor()` in deps.py. It carries:
- id: the user account id
- role: their Role (fixed for the lifetime of the request)
- is_owner: the owner flag, which bypasses the permission matrix
- employee_id: the linked employee profile, if any

Department membership is deliberately not cached here; the evaluator
resolves it through the access repository on each check.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.auth.roles import Role


@dataclass(frozen=True)
class Actor:
    id: int
    email: str
    role: Role
    is_owner: bool = False
    employee_id: int | None = None

    @property
    def label(self) -> str:
        """Identity string for log lines."""
        return f"{self.email} (level {int(self.role)})"
