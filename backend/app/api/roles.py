"""Roles API — read-only view of the role hierarchy and its permissions."""

from fastapi import APIRouter, Depends

from app.api.deps import get_current_actor, get_permission_matrix
from app.auth.context import Actor
from app.auth.evaluator import FINANCIAL_ROLES
from app.auth.permissions import PermissionMatrix
from app.auth.roles import Role

router = APIRouter(prefix="/api/roles", tags=["roles"])


@router.get("")
async def list_roles(actor: Actor = Depends(get_current_actor),
                     matrix: PermissionMatrix = Depends(get_permission_matrix)):
    return [
        {
            "level": int(role),
            "name": role.label,
            "financial_access": role in FINANCIAL_ROLES,
            "permissions": matrix.as_dict(role),
        }
        for role in Role
    ]
