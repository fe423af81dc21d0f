"""User management — accounts, roles and linked employee profiles."""

import logging
import secrets
import string
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.deps import (
    client_ip,
    enforce,
    get_current_actor,
    get_db,
    get_evaluator,
    get_permission_matrix,
    require_level,
    require_permission,
)
from app.auth.context import Actor
from app.auth.evaluator import AccessEvaluator
from app.auth.passwords import hash_password
from app.auth.permissions import PermissionMatrix
from app.auth.roles import Role
from app.models import Employee, User
from app.schemas.schemas import UserCreate, UserUpdate, page_count
from app.services.audit_service import AuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

MIN_PASSWORD_LENGTH = 6


def _user_response(user: User, matrix: PermissionMatrix) -> dict:
    role = Role(user.role_level)
    employee = user.employee if user.employee is not None and user.employee.deleted_at is None else None
    return {
        "id": user.id,
        "email": user.email,
        "role_level": int(role),
        "role_name": role.label,
        "is_active": user.is_active,
        "is_owner": user.is_owner,
        "permissions": sorted(p.value for p in matrix.permissions_for(role)),
        "employee": {
            "id": employee.id,
            "employee_number": employee.employee_number,
            "full_name_ar": employee.full_name_ar,
            "full_name_en": employee.full_name_en,
            "department_id": employee.department_id,
            "specialization_id": employee.specialization_id,
        } if employee else None,
        "last_login": user.last_login.isoformat() if user.last_login else None,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def _generate_temp_password() -> str:
    alphabet = string.ascii_letters + string.digits + "!@#$%"
    return "".join(secrets.choice(alphabet) for _ in range(16))


async def _get_user_or_404(user_id: int, db: AsyncSession) -> User:
    user = (await db.execute(
        select(User)
        .options(selectinload(User.employee))
        .where(User.id == user_id, User.deleted_at.is_(None))
    )).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail={"code": "USER_NOT_FOUND", "message": "User not found"})
    return user


@router.get("")
async def list_users(
    search: str | None = Query(None, max_length=100),
    role_level: int | None = Query(None, ge=1, le=5),
    is_active: bool | None = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(require_level(Role.DIRECT_MANAGER)),
    db: AsyncSession = Depends(get_db),
    matrix: PermissionMatrix = Depends(get_permission_matrix),
):
    """List user accounts with optional search and filters."""
    query = select(User).where(User.deleted_at.is_(None))
    if search:
        pattern = f"%{search}%"
        query = query.outerjoin(Employee, Employee.user_id == User.id).where(or_(
            User.email.ilike(pattern),
            Employee.full_name_ar.ilike(pattern),
            Employee.full_name_en.ilike(pattern),
        ))
    if role_level is not None:
        query = query.where(User.role_level == role_level)
    if is_active is not None:
        query = query.where(User.is_active.is_(is_active))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0

    result = await db.execute(
        query.options(selectinload(User.employee))
        .order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * size)
        .limit(size)
    )
    return {
        "items": [_user_response(u, matrix) for u in result.scalars()],
        "total": total,
        "page": page,
        "size": size,
        "pages": page_count(total, size),
    }


@router.get("/{user_id}")
async def get_user(user_id: int,
                   actor: Actor = Depends(get_current_actor),
                   evaluator: AccessEvaluator = Depends(get_evaluator),
                   db: AsyncSession = Depends(get_db),
                   matrix: PermissionMatrix = Depends(get_permission_matrix)):
    """Fetch one account. Access follows the employee check on its profile."""
    user = await _get_user_or_404(user_id, db)
    employee = user.employee
    if employee is not None and employee.deleted_at is None:
        enforce(await evaluator.can_access_employee(actor, employee.id))
    else:
        enforce(evaluator.authorize(actor, Role.DIRECT_MANAGER))
    return _user_response(user, matrix)


@router.post("", status_code=201)
async def create_user(body: UserCreate,
                      request: Request,
                      actor: Actor = Depends(require_level(Role.DIRECT_MANAGER)),
                      db: AsyncSession = Depends(get_db),
                      matrix: PermissionMatrix = Depends(get_permission_matrix)):
    """Create a user account, optionally with its employee profile."""
    existing = (await db.execute(select(User).where(User.email == body.email))).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=409, detail={"code": "EMAIL_EXISTS", "message": "Email already registered"})

    if body.role_level < actor.role:
        raise HTTPException(
            status_code=403,
            detail={"code": "INSUFFICIENT_PERMISSIONS", "message": "Cannot create a user above your own role"},
        )

    password = body.password or _generate_temp_password()
    if len(password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(
            status_code=400,
            detail={"code": "WEAK_PASSWORD", "message": f"Password must be at least {MIN_PASSWORD_LENGTH} characters"},
        )

    user = User(
        email=body.email,
        password_hash=hash_password(password),
        role_level=body.role_level,
        is_active=body.is_active,
    )
    db.add(user)
    await db.flush()

    if body.employee is not None:
        number_taken = (await db.execute(
            select(Employee.id).where(Employee.employee_number == body.employee.employee_number)
        )).scalar_one_or_none()
        if number_taken:
            raise HTTPException(
                status_code=409,
                detail={"code": "EMPLOYEE_NUMBER_EXISTS", "message": "Employee number already in use"},
            )
        db.add(Employee(user_id=user.id, **body.employee.model_dump()))
        await db.flush()

    await AuditService(db).log_event(
        actor.id, "USER_CREATE", "user", user.id,
        details={"email": user.email, "role_level": user.role_level},
        ip_address=client_ip(request),
    )
    logger.info("User created: %s (level %s) by %s", user.email, user.role_level, actor.label)

    user = await _get_user_or_404(user.id, db)
    resp = _user_response(user, matrix)
    if not body.password:
        resp["temp_password"] = password  # only returned on creation, never stored
    return resp


@router.put("/{user_id}")
async def update_user(user_id: int,
                      body: UserUpdate,
                      request: Request,
                      actor: Actor = Depends(require_level(Role.DIRECT_MANAGER)),
                      db: AsyncSession = Depends(get_db),
                      matrix: PermissionMatrix = Depends(get_permission_matrix)):
    """Update email, password, role or active status."""
    user = await _get_user_or_404(user_id, db)

    if user.is_owner and not actor.is_owner:
        raise HTTPException(
            status_code=403,
            detail={"code": "INSUFFICIENT_PERMISSIONS", "message": "Only the owner can modify the owner account"},
        )

    changes = body.model_dump(exclude_unset=True)
    if body.email is not None and body.email != user.email:
        taken = (await db.execute(select(User.id).where(User.email == body.email))).scalar_one_or_none()
        if taken:
            raise HTTPException(status_code=409, detail={"code": "EMAIL_EXISTS", "message": "Email already registered"})
        user.email = body.email
    if body.password is not None:
        if len(body.password) < MIN_PASSWORD_LENGTH:
            raise HTTPException(
                status_code=400,
                detail={"code": "WEAK_PASSWORD", "message": f"Password must be at least {MIN_PASSWORD_LENGTH} characters"},
            )
        user.password_hash = hash_password(body.password)
    if body.role_level is not None:
        if user.is_owner:
            raise HTTPException(
                status_code=400,
                detail={"code": "OWNER_ROLE_FIXED", "message": "The owner's role cannot be changed"},
            )
        user.role_level = body.role_level
    if body.is_active is not None:
        user.is_active = body.is_active

    changes.pop("password", None)
    await AuditService(db).log_event(
        actor.id, "USER_UPDATE", "user", user.id, details=changes, ip_address=client_ip(request),
    )
    logger.info("User updated: %s by %s", user.email, actor.label)
    await db.flush()
    return _user_response(await _get_user_or_404(user.id, db), matrix)


@router.delete("/{user_id}")
async def delete_user(user_id: int,
                      request: Request,
                      actor: Actor = Depends(require_permission("users", "delete")),
                      db: AsyncSession = Depends(get_db)):
    """Soft-delete a user account. The owner account cannot be deleted."""
    user = await _get_user_or_404(user_id, db)
    if user.is_owner:
        raise HTTPException(
            status_code=400,
            detail={"code": "CANNOT_DELETE_OWNER", "message": "The owner account cannot be deleted"},
        )
    if user.id == actor.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "CANNOT_DELETE_SELF", "message": "You cannot delete your own account"},
        )

    user.deleted_at = datetime.utcnow()
    user.is_active = False

    await AuditService(db).log_event(actor.id, "USER_DELETE", "user", user.id, ip_address=client_ip(request))
    logger.info("User deleted: %s by %s", user.email, actor.label)
    return {"message": "User deleted successfully"}
