"""
Audit API Router — query the system log (owner only).
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, require_level
from app.auth.context import Actor
from app.auth.roles import Role
from app.services.audit_service import AuditService
from app.schemas.schemas import AuditEntry, AuditListResponse, page_count

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("", response_model=AuditListResponse)
async def list_audit_entries(
    user_id: int | None = Query(None, description="Filter by acting user"),
    action: str | None = Query(None, description="Filter by action, e.g. LOGIN"),
    resource_type: str | None = Query(None, description="Filter by resource type"),
    resource_id: str | None = Query(None, description="Filter by resource ID"),
    page: int = Query(1, ge=1, description="Page number"),
    size: int = Query(50, ge=1, le=200, description="Page size"),
    actor: Actor = Depends(require_level(Role.OWNER)),
    db: AsyncSession = Depends(get_db),
) -> AuditListResponse:
    """Return a paginated list of audit log entries with optional filters."""
    service = AuditService(db)
    filters = dict(user_id=user_id, action=action, resource_type=resource_type, resource_id=resource_id)

    entries = await service.get_entries(**filters, limit=size, offset=(page - 1) * size)
    total = await service.get_entry_count(**filters)

    return AuditListResponse(
        total=total,
        page=page,
        size=size,
        pages=page_count(total, size),
        items=[AuditEntry.model_validate(entry) for entry in entries],
    )
