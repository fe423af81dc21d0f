"""Departments API — departments and their specializations."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.deps import client_ip, get_current_actor, get_db, require_level
from app.auth.context import Actor
from app.auth.roles import Role
from app.models import Department, Specialization
from app.schemas.schemas import DepartmentCreate, SpecializationCreate
from app.services.audit_service import AuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/departments", tags=["departments"])


def _specialization_response(spec: Specialization) -> dict:
    return {
        "id": spec.id,
        "department_id": spec.department_id,
        "name_ar": spec.name_ar,
        "name_en": spec.name_en,
    }


def _department_response(department: Department) -> dict:
    return {
        "id": department.id,
        "name_ar": department.name_ar,
        "name_en": department.name_en,
        "description": department.description,
        "is_active": department.is_active,
        "specializations": [_specialization_response(s) for s in department.specializations],
    }


@router.get("")
async def list_departments(actor: Actor = Depends(get_current_actor),
                           db: AsyncSession = Depends(get_db)):
    """Active departments with their specializations."""
    result = await db.execute(
        select(Department)
        .options(selectinload(Department.specializations))
        .where(Department.is_active.is_(True))
        .order_by(Department.id)
    )
    return [_department_response(d) for d in result.scalars()]


@router.post("", status_code=201)
async def create_department(body: DepartmentCreate,
                            request: Request,
                            actor: Actor = Depends(require_level(Role.DIRECT_MANAGER)),
                            db: AsyncSession = Depends(get_db)):
    department = Department(**body.model_dump())
    db.add(department)
    await db.flush()

    await AuditService(db).log_event(
        actor.id, "DEPARTMENT_CREATE", "department", department.id,
        details={"name_en": department.name_en}, ip_address=client_ip(request),
    )
    logger.info("Department created: %s by %s", department.name_en, actor.label)
    return {
        "id": department.id,
        "name_ar": department.name_ar,
        "name_en": department.name_en,
        "description": department.description,
        "is_active": True,
        "specializations": [],
    }


@router.post("/{department_id}/specializations", status_code=201)
async def create_specialization(department_id: int,
                                body: SpecializationCreate,
                                request: Request,
                                actor: Actor = Depends(require_level(Role.DIRECT_MANAGER)),
                                db: AsyncSession = Depends(get_db)):
    department = await db.get(Department, department_id)
    if department is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "DEPARTMENT_NOT_FOUND", "message": "Department not found"},
        )

    spec = Specialization(department_id=department_id, **body.model_dump())
    db.add(spec)
    await db.flush()

    await AuditService(db).log_event(
        actor.id, "SPECIALIZATION_CREATE", "specialization", spec.id,
        details={"department_id": department_id, "name_en": spec.name_en}, ip_address=client_ip(request),
    )
    return _specialization_response(spec)
