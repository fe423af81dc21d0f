"""
API Dependencies — DB session, Redis, actor loading, access guards.

Authentication happens once per request in `get_current_user`:
  1. Extract the Bearer token from the Authorization header
  2. Decode and validate the JWT
  3. Load the user (and employee profile) fresh from the database
  4. Reject unknown, soft-deleted or deactivated accounts

Every failure there is a 401 with its own code and never reaches the
evaluator. Authorization guards then turn evaluator decisions into 403/404
responses via `enforce()`.
"""

import logging
from typing import AsyncGenerator

import redis.asyncio as aioredis
from fastapi import Depends, Request, HTTPException
from jose import ExpiredSignatureError, JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from app.config import settings
from app.database import async_session
from app.auth.context import Actor
from app.auth.decisions import Decision, Outcome
from app.auth.evaluator import AccessEvaluator
from app.auth.jwt import decode_access_token
from app.auth.permissions import PermissionMatrix
from app.auth.repository import ResourceKind
from app.auth.roles import Role, DEFAULT_PERMISSION_MATRIX
from app.models import User
from app.realtime.hub import NotificationHub
from app.services.access_repository import SqlAccessRepository
from app.services.notification_service import deliver_pending, discard_pending

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    """Credential could not be resolved to an active user."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


# ── Database session ─────────────────────────────────────────────────────────

def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session


async def get_db(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session per request, commit on success, rollback on error.

    Realtime pushes queued during the request go out only after the commit.
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            discard_pending(session)
            raise
        await deliver_pending(session)


# ── Redis ────────────────────────────────────────────────────────────────────

async def get_redis() -> AsyncGenerator[aioredis.Redis, None]:
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    try:
        yield client
    finally:
        await client.aclose()


# ── Application state ────────────────────────────────────────────────────────

def get_hub(request: Request) -> NotificationHub:
    return request.app.state.hub


def get_permission_matrix(request: Request) -> PermissionMatrix:
    return getattr(request.app.state, "permission_matrix", DEFAULT_PERMISSION_MATRIX)


# ── Authentication ───────────────────────────────────────────────────────────

def extract_bearer_token(auth_header: str | None) -> str | None:
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    return token or None


async def authenticate_token(token: str | None, db: AsyncSession) -> User:
    """Resolve a bearer token to an active user. Raises AuthenticationError."""
    if not token:
        raise AuthenticationError("NO_TOKEN", "Access denied. No token provided.")

    try:
        claims = decode_access_token(token)
    except ExpiredSignatureError:
        raise AuthenticationError("TOKEN_EXPIRED", "Token has expired.")
    except JWTError as e:
        logger.debug("JWT decode failed: %s", e)
        raise AuthenticationError("INVALID_TOKEN", "Invalid token.")

    try:
        user_id = int(claims.get("sub", ""))
    except (TypeError, ValueError):
        raise AuthenticationError("INVALID_TOKEN", "Invalid token.")

    user = (await db.execute(
        select(User)
        .options(selectinload(User.employee))
        .where(User.id == user_id, User.deleted_at.is_(None))
    )).scalar_one_or_none()

    if user is None:
        raise AuthenticationError("INVALID_USER", "Invalid token. User not found.")
    if not user.is_active:
        raise AuthenticationError("ACCOUNT_DEACTIVATED", "Account is deactivated.")
    try:
        Role(user.role_level)
    except ValueError:
        logger.error("User %s has unknown role level %s", user.id, user.role_level)
        raise AuthenticationError("INVALID_USER", "Invalid token. User role is not recognized.")
    return user


def actor_from_user(user: User) -> Actor:
    employee = user.employee
    return Actor(
        id=user.id,
        email=user.email,
        role=Role(user.role_level),
        is_owner=user.is_owner,
        employee_id=employee.id if employee is not None and employee.deleted_at is None else None,
    )


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
    token = extract_bearer_token(request.headers.get("Authorization"))
    try:
        return await authenticate_token(token, db)
    except AuthenticationError as e:
        logger.info("Authentication failed on %s: %s", request.url.path, e.code)
        raise HTTPException(
            status_code=401,
            detail={"code": e.code, "message": e.message},
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_actor(user: User = Depends(get_current_user)) -> Actor:
    return actor_from_user(user)


# ── Authorization ────────────────────────────────────────────────────────────

async def get_evaluator(
    db: AsyncSession = Depends(get_db),
    matrix: PermissionMatrix = Depends(get_permission_matrix),
) -> AccessEvaluator:
    return AccessEvaluator(SqlAccessRepository(db), matrix)


def enforce(decision: Decision) -> None:
    """Raise 403 / 404 for anything other than Allow."""
    if decision.allowed:
        return
    status_code = 404 if decision.outcome is Outcome.NOT_FOUND else 403
    raise HTTPException(
        status_code=status_code,
        detail={"code": decision.reason.value, "message": decision.message},
    )


def require_level(min_level: int):
    """
    FastAPI dependency admitting roles at or above `min_level`.

    Usage:
        @router.get("/users")
        async def list_users(actor: Actor = Depends(require_level(Role.DIRECT_MANAGER))):
            ...
    """
    async def _check(actor: Actor = Depends(get_current_actor),
                     evaluator: AccessEvaluator = Depends(get_evaluator)) -> Actor:
        enforce(evaluator.authorize(actor, min_level))
        return actor
    return _check


def require_permission(resource: str, action: str):
    """FastAPI dependency checking the permission matrix (owner bypasses it)."""
    async def _check(actor: Actor = Depends(get_current_actor),
                     evaluator: AccessEvaluator = Depends(get_evaluator)) -> Actor:
        enforce(evaluator.check_permission(actor, resource, action))
        return actor
    return _check


async def require_financial(actor: Actor = Depends(get_current_actor),
                            evaluator: AccessEvaluator = Depends(get_evaluator)) -> Actor:
    enforce(evaluator.can_access_financial(actor))
    return actor


# ── Resource guards for /{employee_id}, /{client_id}, /{task_id} paths ──────

async def guard_employee(employee_id: int,
                         actor: Actor = Depends(get_current_actor),
                         evaluator: AccessEvaluator = Depends(get_evaluator)) -> Actor:
    enforce(await evaluator.can_access(actor, ResourceKind.EMPLOYEE, employee_id))
    return actor


async def guard_client(client_id: int,
                       actor: Actor = Depends(get_current_actor),
                       evaluator: AccessEvaluator = Depends(get_evaluator)) -> Actor:
    enforce(await evaluator.can_access(actor, ResourceKind.CLIENT, client_id))
    return actor


async def guard_task(task_id: int,
                     actor: Actor = Depends(get_current_actor),
                     evaluator: AccessEvaluator = Depends(get_evaluator)) -> Actor:
    enforce(await evaluator.can_access(actor, ResourceKind.TASK, task_id))
    return actor


async def actor_department(actor: Actor, db: AsyncSession) -> int | None:
    """Department of the actor's employee profile, used to scope list queries."""
    if actor.employee_id is None:
        return None
    return await SqlAccessRepository(db).resolve_department(ResourceKind.EMPLOYEE, actor.employee_id)


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None
