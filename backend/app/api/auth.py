"""Authentication API — login, refresh, logout, profile, password change."""

import logging
from datetime import datetime

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.api.deps import (
    client_ip,
    get_current_user,
    get_db,
    get_permission_matrix,
    get_redis,
)
from app.auth.jwt import create_access_token, create_refresh_token
from app.auth.passwords import verify_password, hash_password
from app.auth.permissions import PermissionMatrix
from app.auth.roles import Role
from app.models import Employee, User
from app.services.audit_service import AuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

REFRESH_TOKEN_TTL = settings.refresh_token_expire_days * 86400  # seconds
MIN_PASSWORD_LENGTH = 6


# ── Request / Response schemas ────────────────────────────────────────────────

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=MIN_PASSWORD_LENGTH)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class LogoutRequest(BaseModel):
    refresh_token: str | None = None


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = settings.access_token_expire_minutes * 60
    user: dict


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _employee_to_dict(employee: Employee | None) -> dict | None:
    if employee is None or employee.deleted_at is not None:
        return None
    return {
        "id": employee.id,
        "employee_number": employee.employee_number,
        "full_name_ar": employee.full_name_ar,
        "full_name_en": employee.full_name_en,
        "job_title": employee.job_title,
        "department": {
            "id": employee.department.id,
            "name_ar": employee.department.name_ar,
            "name_en": employee.department.name_en,
        } if employee.department else None,
        "specialization": {
            "id": employee.specialization.id,
            "name_ar": employee.specialization.name_ar,
            "name_en": employee.specialization.name_en,
        } if employee.specialization else None,
    }


def _user_to_dict(user: User, matrix: PermissionMatrix, employee: Employee | None = None) -> dict:
    role = Role(user.role_level)
    return {
        "id": user.id,
        "email": user.email,
        "role": {
            "level": int(role),
            "name": role.label,
            "permissions": matrix.as_dict(role),
        },
        "is_owner": user.is_owner,
        "employee": _employee_to_dict(employee),
        "last_login": user.last_login.isoformat() if user.last_login else None,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


async def _load_user(db: AsyncSession, user_id: int) -> User | None:
    return (await db.execute(
        select(User)
        .options(
            selectinload(User.employee).selectinload(Employee.department),
            selectinload(User.employee).selectinload(Employee.specialization),
        )
        .where(User.id == user_id, User.deleted_at.is_(None))
    )).scalar_one_or_none()


def _credentials_error(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=401, detail={"code": code, "message": message})


# ── Endpoints ─────────────────────────────────────────────────────────────────

@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest,
                request: Request,
                db: AsyncSession = Depends(get_db),
                r: aioredis.Redis = Depends(get_redis),
                matrix: PermissionMatrix = Depends(get_permission_matrix)):
    """Authenticate with email + password, receive an access token and a refresh token."""
    user = (await db.execute(
        select(User).where(User.email == body.email, User.deleted_at.is_(None))
    )).scalar_one_or_none()

    if not user:
        raise _credentials_error("INVALID_CREDENTIALS", "Invalid email or password")

    if not user.is_active:
        raise _credentials_error("ACCOUNT_DEACTIVATED", "Account is deactivated")

    if not verify_password(body.password, user.password_hash):
        logger.warning("Failed login attempt for %s from %s", body.email, client_ip(request))
        raise _credentials_error("INVALID_CREDENTIALS", "Invalid email or password")

    user.last_login = datetime.utcnow()

    access_token = create_access_token(user.id, user.email, user.role_level)
    refresh_token = create_refresh_token()
    await r.setex(f"refresh:{refresh_token}", REFRESH_TOKEN_TTL, str(user.id))

    await AuditService(db).log_login(user.id, client_ip(request), request.headers.get("User-Agent"))
    logger.info("Login: %s (level %s)", user.email, user.role_level)

    user = await _load_user(db, user.id)
    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        user=_user_to_dict(user, matrix, user.employee),
    )


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest,
                  db: AsyncSession = Depends(get_db),
                  r: aioredis.Redis = Depends(get_redis),
                  matrix: PermissionMatrix = Depends(get_permission_matrix)):
    """Exchange a valid refresh token for a new access token (the refresh token rotates)."""
    user_id_str = await r.get(f"refresh:{body.refresh_token}")
    if not user_id_str:
        raise _credentials_error("INVALID_REFRESH_TOKEN", "Invalid or expired refresh token")

    user = await _load_user(db, int(user_id_str))
    if not user or not user.is_active:
        await r.delete(f"refresh:{body.refresh_token}")
        raise _credentials_error("INVALID_REFRESH_TOKEN", "User not found or deactivated")

    await r.delete(f"refresh:{body.refresh_token}")
    new_refresh = create_refresh_token()
    await r.setex(f"refresh:{new_refresh}", REFRESH_TOKEN_TTL, str(user.id))

    return TokenResponse(
        access_token=create_access_token(user.id, user.email, user.role_level),
        refresh_token=new_refresh,
        user=_user_to_dict(user, matrix, user.employee),
    )


@router.post("/logout")
async def logout(body: LogoutRequest,
                 request: Request,
                 user: User = Depends(get_current_user),
                 db: AsyncSession = Depends(get_db),
                 r: aioredis.Redis = Depends(get_redis)):
    """Revoke the refresh token, if one is given."""
    if body.refresh_token:
        await r.delete(f"refresh:{body.refresh_token}")
    await AuditService(db).log_logout(user.id, client_ip(request))
    logger.info("Logout: %s", user.email)
    return {"message": "Logout successful"}


@router.get("/me")
async def me(user: User = Depends(get_current_user),
             db: AsyncSession = Depends(get_db),
             matrix: PermissionMatrix = Depends(get_permission_matrix)):
    """Return the authenticated user with role, permissions and employee profile."""
    full = await _load_user(db, user.id)
    if not full:
        raise HTTPException(status_code=404, detail={"code": "USER_NOT_FOUND", "message": "User not found"})
    return _user_to_dict(full, matrix, full.employee)


@router.post("/change-password")
async def change_password(body: ChangePasswordRequest,
                          request: Request,
                          user: User = Depends(get_current_user),
                          db: AsyncSession = Depends(get_db)):
    """Change own password (requires the current password)."""
    if not verify_password(body.current_password, user.password_hash):
        raise HTTPException(
            status_code=400,
            detail={"code": "INVALID_CURRENT_PASSWORD", "message": "Current password is incorrect"},
        )

    user.password_hash = hash_password(body.new_password)
    await AuditService(db).log_password_change(user.id, client_ip(request))
    logger.info("Password changed for %s", user.email)
    return {"message": "Password changed successfully"}
