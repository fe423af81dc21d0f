from app.auth.permissions import Action, Permission, PermissionMatrix, Resource
from app.auth.roles import Role, DEFAULT_PERMISSION_MATRIX
from app.auth.context import Actor
from app.auth.decisions import Decision, Outcome, ReasonCode
from app.auth.repository import AccessRepository, Assignment, ResourceKind
from app.auth.evaluator import AccessEvaluator

__all__ = [
    "Action", "Permission", "PermissionMatrix", "Resource",
    "Role", "DEFAULT_PERMISSION_MATRIX", "Actor",
    "Decision", "Outcome", "ReasonCode",
    "AccessRepository", "Assignment", "ResourceKind", "AccessEvaluator",
]
