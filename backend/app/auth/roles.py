"""
Role definitions — the organizational hierarchy and its default grants.

Roles carry a numeric level; lower means more authority:

    OWNER(1) < DIRECT_MANAGER(2) < TEAM_LEADER(3) < EMPLOYEE(4) < ACCOUNTANT(5)

Level comparisons drive the coarse role gate (`authorize(actor, 2)` admits
owners and direct managers). The accountant sits at the bottom of the
numeric order but is granted financial access explicitly.
"""

from enum import IntEnum

from app.auth.permissions import Permission, PermissionMatrix


class Role(IntEnum):
    OWNER = 1
    DIRECT_MANAGER = 2
    TEAM_LEADER = 3
    EMPLOYEE = 4
    ACCOUNTANT = 5

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


# ── Employee: own profile, own clients and tasks ──
_EMPLOYEE_PERMS: set[Permission] = {
    Permission.EMPLOYEES_READ,
    Permission.DEPARTMENTS_READ,
    Permission.CLIENTS_READ,
    Permission.TASKS_READ,
    Permission.TASKS_UPDATE,
}

# ── Team Leader: employee + manages department clients and tasks ──
_TEAM_LEADER_PERMS: set[Permission] = {
    *_EMPLOYEE_PERMS,
    Permission.CLIENTS_CREATE,
    Permission.CLIENTS_UPDATE,
    Permission.TASKS_CREATE,
}

# ── Direct Manager: everything except deleting user accounts ──
_DIRECT_MANAGER_PERMS: set[Permission] = {
    p for p in Permission if p != Permission.USERS_DELETE
}

# ── Owner: everything (and bypasses the matrix anyway) ──
_OWNER_PERMS: set[Permission] = {p for p in Permission}

# ── Accountant: financial records plus read access to clients ──
_ACCOUNTANT_PERMS: set[Permission] = {
    Permission.DEPARTMENTS_READ,
    Permission.CLIENTS_READ,
    Permission.FINANCIAL_CREATE,
    Permission.FINANCIAL_READ,
    Permission.FINANCIAL_UPDATE,
}


DEFAULT_PERMISSION_MATRIX = PermissionMatrix({
    Role.OWNER: _OWNER_PERMS,
    Role.DIRECT_MANAGER: _DIRECT_MANAGER_PERMS,
    Role.TEAM_LEADER: _TEAM_LEADER_PERMS,
    Role.EMPLOYEE: _EMPLOYEE_PERMS,
    Role.ACCOUNTANT: _ACCOUNTANT_PERMS,
})
