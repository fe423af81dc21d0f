"""
Clients API

Client records and categories. Listing is scoped by role; every per-record
route passes the client access check first, and every mutation appends a
row to the client's history.
"""

import logging
import time
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select, func, or_, update, delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.deps import (
    actor_department,
    client_ip,
    enforce,
    get_current_actor,
    get_db,
    get_evaluator,
    guard_client,
    require_level,
    require_permission,
)
from app.auth.context import Actor
from app.auth.evaluator import AccessEvaluator
from app.auth.roles import Role
from app.models import Client, ClientCategory, ClientHistory, Payment, Specialization, Task
from app.schemas.schemas import ClientCategoryCreate, ClientCreate, ClientUpdate, page_count
from app.services.audit_service import AuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/clients", tags=["clients"])

SORT_FIELDS = {
    "created_at": Client.created_at,
    "updated_at": Client.updated_at,
    "full_name_ar": Client.full_name_ar,
    "full_name_en": Client.full_name_en,
    "company_name": Client.company_name,
    "status": Client.status,
}


# ── Helpers ──────────────────────────────────────────────────────────────────

def _client_response(client: Client, include_history: bool = False) -> dict:
    data = {
        "id": client.id,
        "full_name_ar": client.full_name_ar,
        "full_name_en": client.full_name_en,
        "company_name": client.company_name,
        "business_field": client.business_field,
        "primary_phone": client.primary_phone,
        "primary_email": client.primary_email,
        "address": client.address,
        "country": client.country,
        "category_id": client.category_id,
        "category_name": client.category.name_en if client.category else None,
        "assigned_employee_id": client.assigned_employee_id,
        "contract_number": client.contract_number,
        "contract_start_date": client.contract_start_date.isoformat() if client.contract_start_date else None,
        "contract_end_date": client.contract_end_date.isoformat() if client.contract_end_date else None,
        "contract_value": float(client.contract_value) if client.contract_value is not None else None,
        "contract_currency": client.contract_currency,
        "payment_type": client.payment_type,
        "status": client.status,
        "created_at": client.created_at.isoformat() if client.created_at else None,
    }
    if include_history:
        data["history"] = [
            {
                "action_type": h.action_type,
                "action_description": h.action_description,
                "performed_by": h.performed_by,
                "created_at": h.created_at.isoformat() if h.created_at else None,
            }
            for h in sorted(client.history, key=lambda h: h.id, reverse=True)[:10]
        ]
    return data


async def _get_client_or_404(client_id: int, db: AsyncSession, *, with_history: bool = False) -> Client:
    query = select(Client).options(selectinload(Client.category)).where(
        Client.id == client_id, Client.deleted_at.is_(None),
    ).execution_options(populate_existing=True)
    if with_history:
        query = query.options(selectinload(Client.history))
    client = (await db.execute(query)).scalar_one_or_none()
    if not client:
        raise HTTPException(status_code=404, detail={"code": "CLIENT_NOT_FOUND", "message": "Client not found"})
    return client


def _record_history(db: AsyncSession, client_id: int, action_type: str, description: str, actor: Actor) -> None:
    db.add(ClientHistory(
        client_id=client_id,
        action_type=action_type,
        action_description=description,
        performed_by=actor.id,
    ))


def _empty_page(page: int, size: int) -> dict:
    return {"items": [], "total": 0, "page": page, "size": size, "pages": 1}


# ── Categories ───────────────────────────────────────────────────────────────

@router.get("/categories")
async def list_categories(actor: Actor = Depends(get_current_actor),
                          db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(ClientCategory)
        .options(selectinload(ClientCategory.specialization))
        .where(ClientCategory.is_active.is_(True))
        .order_by(ClientCategory.name_ar)
    )
    return [
        {
            "id": c.id,
            "name_ar": c.name_ar,
            "name_en": c.name_en,
            "description": c.description,
            "specialization_id": c.specialization_id,
            "specialization_name_en": c.specialization.name_en if c.specialization else None,
        }
        for c in result.scalars()
    ]


@router.post("/categories", status_code=201)
async def create_category(body: ClientCategoryCreate,
                          actor: Actor = Depends(require_level(Role.DIRECT_MANAGER)),
                          db: AsyncSession = Depends(get_db)):
    if body.specialization_id is not None and await db.get(Specialization, body.specialization_id) is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "INVALID_SPECIALIZATION", "message": "Specialization does not exist"},
        )
    category = ClientCategory(**body.model_dump())
    db.add(category)
    await db.flush()
    logger.info("Client category created: %s by %s", category.name_en, actor.label)
    return {
        "id": category.id,
        "name_ar": category.name_ar,
        "name_en": category.name_en,
        "description": category.description,
        "specialization_id": category.specialization_id,
    }


# ── GET /api/clients ─────────────────────────────────────────────────────────

@router.get("")
async def list_clients(
    search: str | None = Query(None, max_length=100),
    status: str | None = Query(None, pattern="^(active|inactive|suspended)$"),
    category_id: int | None = Query(None),
    assigned_employee_id: int | None = Query(None),
    sort: str = Query("created_at:desc"),
    page: int = Query(1, ge=1),
    size: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """
    Clients visible to the caller:
      Team Leader → clients whose category belongs to the leader's department
      Employee    → clients assigned to the caller
      others      → all
    """
    query = (
        select(Client)
        .outerjoin(ClientCategory, Client.category_id == ClientCategory.id)
        .outerjoin(Specialization, ClientCategory.specialization_id == Specialization.id)
        .where(Client.deleted_at.is_(None))
    )

    if actor.role == Role.TEAM_LEADER:
        own_department = await actor_department(actor, db)
        if own_department is None:
            return _empty_page(page, size)
        query = query.where(Specialization.department_id == own_department)
    elif actor.role == Role.EMPLOYEE:
        if actor.employee_id is None:
            return _empty_page(page, size)
        query = query.where(Client.assigned_employee_id == actor.employee_id)

    if search:
        pattern = f"%{search}%"
        query = query.where(or_(
            Client.full_name_ar.ilike(pattern),
            Client.full_name_en.ilike(pattern),
            Client.company_name.ilike(pattern),
            Client.primary_email.ilike(pattern),
        ))
    if status:
        query = query.where(Client.status == status)
    if category_id is not None:
        query = query.where(Client.category_id == category_id)
    if assigned_employee_id is not None:
        query = query.where(Client.assigned_employee_id == assigned_employee_id)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0

    sort_field, _, sort_order = sort.partition(":")
    column = SORT_FIELDS.get(sort_field, Client.created_at)
    order = column.asc() if sort_order == "asc" else column.desc()

    result = await db.execute(
        query.options(selectinload(Client.category))
        .order_by(order, Client.id.desc())
        .offset((page - 1) * size)
        .limit(size)
    )
    return {
        "items": [_client_response(c) for c in result.scalars()],
        "total": total,
        "page": page,
        "size": size,
        "pages": page_count(total, size),
    }


# ── Per-client routes ────────────────────────────────────────────────────────

@router.get("/{client_id}")
async def get_client(client_id: int,
                     actor: Actor = Depends(guard_client),
                     db: AsyncSession = Depends(get_db)):
    """Client detail with the latest history entries and outstanding total."""
    client = await _get_client_or_404(client_id, db, with_history=True)
    outstanding = (await db.execute(
        select(func.coalesce(func.sum(Payment.amount), 0))
        .where(Payment.client_id == client_id, Payment.status != "paid")
    )).scalar()
    data = _client_response(client, include_history=True)
    data["total_outstanding"] = float(outstanding or 0)
    return data


@router.post("", status_code=201)
async def create_client(body: ClientCreate,
                        request: Request,
                        actor: Actor = Depends(require_permission("clients", "create")),
                        db: AsyncSession = Depends(get_db)):
    fields = body.model_dump()
    fields["contract_number"] = body.contract_number or f"CNT{int(time.time() * 1000)}"

    taken = (await db.execute(
        select(Client.id).where(Client.contract_number == fields["contract_number"])
    )).scalar_one_or_none()
    if taken:
        raise HTTPException(
            status_code=409,
            detail={"code": "CONTRACT_NUMBER_EXISTS", "message": "Contract number already in use"},
        )

    client = Client(**fields, status="active", created_by=actor.id)
    db.add(client)
    await db.flush()

    _record_history(db, client.id, "CREATE", "Client created", actor)
    await AuditService(db).log_event(
        actor.id, "CLIENT_CREATE", "client", client.id, ip_address=client_ip(request),
    )
    logger.info("Client created: %s by %s", client.id, actor.label)
    return _client_response(await _get_client_or_404(client.id, db))


@router.put("/{client_id}")
async def update_client(client_id: int,
                        body: ClientUpdate,
                        request: Request,
                        actor: Actor = Depends(guard_client),
                        evaluator: AccessEvaluator = Depends(get_evaluator),
                        db: AsyncSession = Depends(get_db)):
    enforce(evaluator.check_permission(actor, "clients", "update"))
    client = await _get_client_or_404(client_id, db)
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail={"code": "NO_CHANGES", "message": "No fields to update"})

    for field, value in changes.items():
        setattr(client, field, value)
    await db.flush()

    _record_history(db, client.id, "UPDATE", f"Updated: {', '.join(sorted(changes))}", actor)
    await AuditService(db).log_event(
        actor.id, "CLIENT_UPDATE", "client", client.id,
        details={"fields": sorted(changes)}, ip_address=client_ip(request),
    )
    logger.info("Client updated: %s by %s", client.id, actor.label)
    return _client_response(await _get_client_or_404(client_id, db))


@router.delete("/{client_id}")
async def delete_client(client_id: int,
                        request: Request,
                        permanent: bool = Query(False),
                        actor: Actor = Depends(guard_client),
                        evaluator: AccessEvaluator = Depends(get_evaluator),
                        db: AsyncSession = Depends(get_db)):
    """
    Deactivate a client (soft delete). `permanent=true` removes the record
    and is reserved for the owner. Clients with unpaid payments cannot be
    deactivated; the owner's permanent delete removes those payments too.
    """
    enforce(evaluator.check_permission(actor, "clients", "delete"))
    if permanent and not (actor.is_owner or actor.role == Role.OWNER):
        raise HTTPException(
            status_code=403,
            detail={"code": "PERMANENT_DELETE_DENIED", "message": "Only the owner can permanently delete clients"},
        )

    client = await _get_client_or_404(client_id, db, with_history=True)

    if not permanent:
        unpaid = (await db.execute(
            select(func.count()).select_from(Payment)
            .where(Payment.client_id == client_id, Payment.status != "paid")
        )).scalar() or 0
        if unpaid:
            raise HTTPException(
                status_code=400,
                detail={"code": "OUTSTANDING_PAYMENTS_EXIST", "message": "Cannot delete client with outstanding payments"},
            )

    audit = AuditService(db)
    if permanent:
        await db.execute(update(Task).where(Task.client_id == client_id).values(client_id=None))
        await db.execute(delete(Payment).where(Payment.client_id == client_id))
        await db.delete(client)
        await audit.log_event(actor.id, "CLIENT_PURGE", "client", client_id, ip_address=client_ip(request))
        logger.info("Client permanently deleted: %s by owner %s", client_id, actor.label)
        return {"message": "Client permanently deleted"}

    client.deleted_at = datetime.utcnow()
    client.status = "inactive"
    _record_history(db, client.id, "DELETE", "Client deactivated", actor)
    await audit.log_event(actor.id, "CLIENT_DELETE", "client", client_id, ip_address=client_ip(request))
    logger.info("Client soft deleted: %s by %s", client_id, actor.label)
    return {"message": "Client deactivated successfully"}
