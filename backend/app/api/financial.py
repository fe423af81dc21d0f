"""
Financial API — client payments.

The whole router sits behind the financial gate (Owner, Direct Manager,
Accountant). Changes are pushed live to those roles.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import client_ip, get_db, get_hub, require_financial
from app.auth.context import Actor
from app.models import Client, Payment
from app.realtime.hub import NotificationHub
from app.schemas.schemas import PaymentCreate, page_count
from app.services.audit_service import AuditService
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/financial", tags=["financial"], dependencies=[Depends(require_financial)])


def _payment_response(payment: Payment) -> dict:
    return {
        "id": payment.id,
        "client_id": payment.client_id,
        "amount": float(payment.amount),
        "currency": payment.currency,
        "status": payment.status,
        "description": payment.description,
        "due_date": payment.due_date.isoformat() if payment.due_date else None,
        "paid_at": payment.paid_at.isoformat() if payment.paid_at else None,
        "recorded_by": payment.recorded_by,
        "created_at": payment.created_at.isoformat() if payment.created_at else None,
    }


@router.get("/payments")
async def list_payments(
    status: str | None = Query(None, pattern="^(pending|paid|overdue)$"),
    client_id: int | None = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    query = select(Payment)
    if status:
        query = query.where(Payment.status == status)
    if client_id is not None:
        query = query.where(Payment.client_id == client_id)

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
    result = await db.execute(
        query.order_by(Payment.id.desc()).offset((page - 1) * size).limit(size)
    )
    return {
        "items": [_payment_response(p) for p in result.scalars()],
        "total": total,
        "page": page,
        "size": size,
        "pages": page_count(total, size),
    }


@router.post("/payments", status_code=201)
async def record_payment(body: PaymentCreate,
                         request: Request,
                         actor: Actor = Depends(require_financial),
                         db: AsyncSession = Depends(get_db),
                         hub: NotificationHub = Depends(get_hub)):
    client = await db.get(Client, body.client_id)
    if client is None or client.deleted_at is not None:
        raise HTTPException(status_code=404, detail={"code": "CLIENT_NOT_FOUND", "message": "Client not found"})

    payment = Payment(**body.model_dump(), status="pending", recorded_by=actor.id)
    db.add(payment)
    await db.flush()
    await db.refresh(payment)

    await AuditService(db).log_event(
        actor.id, "PAYMENT_CREATE", "payment", payment.id,
        details={"client_id": payment.client_id, "amount": str(payment.amount)},
        ip_address=client_ip(request),
    )
    data = _payment_response(payment)
    await NotificationService(db, hub).push_payment_update({"action": "created", "payment": data})

    logger.info("Payment recorded: %s for client %s by %s", payment.id, payment.client_id, actor.label)
    return data


@router.put("/payments/{payment_id}/paid")
async def mark_paid(payment_id: int,
                    request: Request,
                    actor: Actor = Depends(require_financial),
                    db: AsyncSession = Depends(get_db),
                    hub: NotificationHub = Depends(get_hub)):
    payment = await db.get(Payment, payment_id)
    if payment is None:
        raise HTTPException(status_code=404, detail={"code": "PAYMENT_NOT_FOUND", "message": "Payment not found"})
    if payment.status == "paid":
        raise HTTPException(status_code=409, detail={"code": "ALREADY_PAID", "message": "Payment is already settled"})

    payment.status = "paid"
    payment.paid_at = datetime.utcnow()
    await db.flush()

    await AuditService(db).log_event(
        actor.id, "PAYMENT_PAID", "payment", payment.id, ip_address=client_ip(request),
    )
    data = _payment_response(payment)
    await NotificationService(db, hub).push_payment_update({"action": "paid", "payment": data})

    logger.info("Payment settled: %s by %s", payment.id, actor.label)
    return data
