"""
Employees API

Employee profiles: listing scoped to what the caller may see, single-record
reads behind the employee access check, and management for level ≤ 2.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.deps import (
    actor_department,
    client_ip,
    get_db,
    guard_employee,
    require_level,
    get_current_actor,
)
from app.auth.context import Actor
from app.auth.roles import Role
from app.models import Department, Employee, Specialization, User
from app.schemas.schemas import EmployeeCreate, EmployeeUpdate, page_count
from app.services.audit_service import AuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/employees", tags=["employees"])


def _employee_response(employee: Employee) -> dict:
    return {
        "id": employee.id,
        "user_id": employee.user_id,
        "employee_number": employee.employee_number,
        "full_name_ar": employee.full_name_ar,
        "full_name_en": employee.full_name_en,
        "job_title": employee.job_title,
        "phone": employee.phone,
        "department_id": employee.department_id,
        "department_name": employee.department.name_en if employee.department else None,
        "specialization_id": employee.specialization_id,
        "specialization_name": employee.specialization.name_en if employee.specialization else None,
        "hire_date": employee.hire_date.isoformat() if employee.hire_date else None,
        "is_active": employee.is_active,
        "email": employee.user.email if employee.user else None,
        "role_level": employee.user.role_level if employee.user else None,
    }


async def _get_employee_or_404(employee_id: int, db: AsyncSession) -> Employee:
    employee = (await db.execute(
        select(Employee)
        .options(
            selectinload(Employee.department),
            selectinload(Employee.specialization),
            selectinload(Employee.user),
        )
        .where(Employee.id == employee_id, Employee.deleted_at.is_(None))
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()
    if not employee:
        raise HTTPException(status_code=404, detail={"code": "EMPLOYEE_NOT_FOUND", "message": "Employee not found"})
    return employee


async def _validate_placement(db: AsyncSession, department_id: int | None, specialization_id: int | None) -> None:
    if department_id is not None and await db.get(Department, department_id) is None:
        raise HTTPException(status_code=400, detail={"code": "INVALID_DEPARTMENT", "message": "Department does not exist"})
    if specialization_id is not None:
        spec = await db.get(Specialization, specialization_id)
        if spec is None or (department_id is not None and spec.department_id != department_id):
            raise HTTPException(
                status_code=400,
                detail={"code": "INVALID_SPECIALIZATION", "message": "Specialization does not belong to the department"},
            )


# ── GET /api/employees ───────────────────────────────────────────────────────

@router.get("")
async def list_employees(
    search: str | None = Query(None, max_length=100),
    department_id: int | None = Query(None),
    is_active: bool | None = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """
    Employees visible to the caller:
      Owner / Direct Manager → all
      Team Leader            → own department
      Employee               → self
      anyone else, or a caller without a profile → none
    """
    query = select(Employee).where(Employee.deleted_at.is_(None))

    if actor.role == Role.TEAM_LEADER:
        own_department = await actor_department(actor, db)
        if own_department is None:
            return {"items": [], "total": 0, "page": page, "size": size, "pages": 1}
        query = query.where(Employee.department_id == own_department)
    elif actor.role == Role.EMPLOYEE:
        if actor.employee_id is None:
            return {"items": [], "total": 0, "page": page, "size": size, "pages": 1}
        query = query.where(Employee.id == actor.employee_id)
    elif actor.role not in (Role.OWNER, Role.DIRECT_MANAGER):
        return {"items": [], "total": 0, "page": page, "size": size, "pages": 1}

    if search:
        pattern = f"%{search}%"
        query = query.where(or_(
            Employee.full_name_ar.ilike(pattern),
            Employee.full_name_en.ilike(pattern),
            Employee.employee_number.ilike(pattern),
        ))
    if department_id is not None:
        query = query.where(Employee.department_id == department_id)
    if is_active is not None:
        query = query.where(Employee.is_active.is_(is_active))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0

    result = await db.execute(
        query.options(
            selectinload(Employee.department),
            selectinload(Employee.specialization),
            selectinload(Employee.user),
        )
        .order_by(Employee.id)
        .offset((page - 1) * size)
        .limit(size)
    )
    return {
        "items": [_employee_response(e) for e in result.scalars()],
        "total": total,
        "page": page,
        "size": size,
        "pages": page_count(total, size),
    }


# ── GET /api/employees/{employee_id} ─────────────────────────────────────────

@router.get("/{employee_id}")
async def get_employee(employee_id: int,
                       actor: Actor = Depends(guard_employee),
                       db: AsyncSession = Depends(get_db)):
    return _employee_response(await _get_employee_or_404(employee_id, db))


# ── Management (Owner / Direct Manager) ──────────────────────────────────────

@router.post("", status_code=201)
async def create_employee(body: EmployeeCreate,
                          request: Request,
                          actor: Actor = Depends(require_level(Role.DIRECT_MANAGER)),
                          db: AsyncSession = Depends(get_db)):
    """Create an employee profile, optionally linked to an existing user account."""
    taken = (await db.execute(
        select(Employee.id).where(Employee.employee_number == body.employee_number)
    )).scalar_one_or_none()
    if taken:
        raise HTTPException(
            status_code=409,
            detail={"code": "EMPLOYEE_NUMBER_EXISTS", "message": "Employee number already in use"},
        )

    if body.user_id is not None:
        user = await db.get(User, body.user_id)
        if user is None or user.deleted_at is not None:
            raise HTTPException(status_code=400, detail={"code": "INVALID_USER", "message": "User does not exist"})
        linked = (await db.execute(
            select(Employee.id).where(Employee.user_id == body.user_id)
        )).scalar_one_or_none()
        if linked:
            raise HTTPException(
                status_code=409,
                detail={"code": "USER_ALREADY_LINKED", "message": "User already has an employee profile"},
            )

    await _validate_placement(db, body.department_id, body.specialization_id)

    employee = Employee(**body.model_dump())
    db.add(employee)
    await db.flush()

    await AuditService(db).log_event(
        actor.id, "EMPLOYEE_CREATE", "employee", employee.id,
        details={"employee_number": employee.employee_number}, ip_address=client_ip(request),
    )
    logger.info("Employee created: %s by %s", employee.employee_number, actor.label)
    return _employee_response(await _get_employee_or_404(employee.id, db))


@router.put("/{employee_id}")
async def update_employee(employee_id: int,
                          body: EmployeeUpdate,
                          request: Request,
                          actor: Actor = Depends(require_level(Role.DIRECT_MANAGER)),
                          db: AsyncSession = Depends(get_db)):
    employee = await _get_employee_or_404(employee_id, db)
    changes = body.model_dump(exclude_unset=True)

    department_id = changes.get("department_id", employee.department_id)
    specialization_id = changes.get("specialization_id", employee.specialization_id)
    if "department_id" in changes or "specialization_id" in changes:
        await _validate_placement(db, department_id, specialization_id)

    for field, value in changes.items():
        setattr(employee, field, value)
    await db.flush()

    await AuditService(db).log_event(
        actor.id, "EMPLOYEE_UPDATE", "employee", employee.id,
        details={k: str(v) for k, v in changes.items()}, ip_address=client_ip(request),
    )
    logger.info("Employee updated: %s by %s", employee.employee_number, actor.label)
    return _employee_response(await _get_employee_or_404(employee_id, db))


@router.delete("/{employee_id}")
async def delete_employee(employee_id: int,
                          request: Request,
                          actor: Actor = Depends(require_level(Role.DIRECT_MANAGER)),
                          db: AsyncSession = Depends(get_db)):
    """Soft-delete an employee profile."""
    employee = await _get_employee_or_404(employee_id, db)
    employee.deleted_at = datetime.utcnow()
    employee.is_active = False

    await AuditService(db).log_event(
        actor.id, "EMPLOYEE_DELETE", "employee", employee.id, ip_address=client_ip(request),
    )
    logger.info("Employee deleted: %s by %s", employee.employee_number, actor.label)
    return {"message": "Employee deleted successfully"}
