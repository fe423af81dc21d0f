"""
Tasks API

Task listing (scoped by role), categories, creation, updates, status
transitions and comments. Every per-task route passes the task access check
first; each mutation appends a row to the task's history, and the assignee
hears about changes through the notification service.
"""

import logging
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import select, func, or_, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.deps import (
    actor_department,
    client_ip,
    get_current_actor,
    get_db,
    get_hub,
    guard_task,
    require_level,
    require_permission,
)
from app.auth.context import Actor
from app.auth.roles import Role
from app.models import Client, Employee, Specialization, Task, TaskCategory, TaskComment, TaskHistory, User
from app.realtime.hub import NotificationHub
from app.schemas.schemas import (
    TASK_PRIORITIES,
    TASK_STATUSES,
    TaskCategoryCreate,
    TaskCommentCreate,
    TaskCreate,
    TaskStatusUpdate,
    TaskUpdate,
    page_count,
)
from app.services.audit_service import AuditService
from app.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tasks", tags=["tasks"])

SORT_FIELDS = {
    "created_at": Task.created_at,
    "updated_at": Task.updated_at,
    "due_date": Task.due_date,
    "priority": Task.priority,
    "status": Task.status,
    "title": Task.title,
}

_STATUS_PATTERN = f"^({'|'.join(TASK_STATUSES)})$"
_PRIORITY_PATTERN = f"^({'|'.join(TASK_PRIORITIES)})$"


# ── Helpers ──────────────────────────────────────────────────────────────────

def _is_overdue(task: Task) -> bool:
    return task.status != "completed" and task.due_date is not None and task.due_date < date.today()


def _overdue_clause():
    return and_(Task.status != "completed", Task.due_date.is_not(None), Task.due_date < date.today())


def _task_response(task: Task, include_details: bool = False) -> dict:
    data = {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "category_id": task.category_id,
        "category_name": task.category.name_en if task.category else None,
        "status": task.status,
        "priority": task.priority,
        "progress_percentage": task.progress_percentage,
        "expected_duration": task.expected_duration,
        "client_id": task.client_id,
        "assigned_to": task.assigned_to,
        "created_by": task.created_by,
        "start_date": task.start_date.isoformat() if task.start_date else None,
        "due_date": task.due_date.isoformat() if task.due_date else None,
        "completed_at": task.completed_at.isoformat() if task.completed_at else None,
        "created_at": task.created_at.isoformat() if task.created_at else None,
        "is_overdue": _is_overdue(task),
    }
    if include_details:
        data["comments"] = [
            {
                "id": c.id,
                "user_id": c.user_id,
                "content": c.content,
                "created_at": c.created_at.isoformat() if c.created_at else None,
            }
            for c in sorted(task.comments, key=lambda c: c.id)
        ]
        data["history"] = [
            {
                "action_type": h.action_type,
                "action_description": h.action_description,
                "performed_by": h.performed_by,
                "old_values": h.old_values,
                "new_values": h.new_values,
                "created_at": h.created_at.isoformat() if h.created_at else None,
            }
            for h in sorted(task.history, key=lambda h: h.id, reverse=True)
        ]
    return data


def _category_response(category: TaskCategory) -> dict:
    return {
        "id": category.id,
        "name_ar": category.name_ar,
        "name_en": category.name_en,
        "description": category.description,
        "specialization_id": category.specialization_id,
        "specialization_name_en": category.specialization.name_en if category.specialization else None,
    }


async def _get_task_or_404(task_id: int, db: AsyncSession, *, with_details: bool = False) -> Task:
    query = (
        select(Task)
        .options(selectinload(Task.category))
        .where(Task.id == task_id, Task.deleted_at.is_(None))
        .execution_options(populate_existing=True)
    )
    if with_details:
        query = query.options(selectinload(Task.comments), selectinload(Task.history))
    task = (await db.execute(query)).scalar_one_or_none()
    if not task:
        raise HTTPException(status_code=404, detail={"code": "TASK_NOT_FOUND", "message": "Task not found"})
    return task


async def _validate_references(db: AsyncSession, changes: dict) -> None:
    if changes.get("client_id") is not None:
        client = await db.get(Client, changes["client_id"])
        if client is None or client.deleted_at is not None:
            raise HTTPException(status_code=400, detail={"code": "INVALID_CLIENT", "message": "Client does not exist"})
    if changes.get("category_id") is not None:
        category = await db.get(TaskCategory, changes["category_id"])
        if category is None or not category.is_active:
            raise HTTPException(
                status_code=400, detail={"code": "INVALID_CATEGORY", "message": "Task category does not exist"},
            )
    if changes.get("assigned_to") is not None:
        employee = await db.get(Employee, changes["assigned_to"])
        if employee is None or employee.deleted_at is not None or not employee.is_active:
            raise HTTPException(
                status_code=400,
                detail={"code": "INVALID_ASSIGNEE", "message": "Assignee is not an active employee"},
            )


async def _check_assignment(db: AsyncSession, actor: Actor, assigned_to: int | None) -> None:
    """Employees may not hand work up to team leaders or managers."""
    if assigned_to is None or actor.role != Role.EMPLOYEE:
        return
    assignee_level = (await db.execute(
        select(User.role_level).join(Employee, Employee.user_id == User.id).where(Employee.id == assigned_to)
    )).scalar_one_or_none()
    if assignee_level is not None and assignee_level <= Role.TEAM_LEADER:
        raise HTTPException(
            status_code=403,
            detail={"code": "ASSIGNMENT_NOT_ALLOWED", "message": "Cannot assign tasks to managers"},
        )


def _record_history(db: AsyncSession, task_id: int, action_type: str, description: str, actor: Actor,
                    old_values: dict | None = None, new_values: dict | None = None) -> None:
    db.add(TaskHistory(
        task_id=task_id,
        action_type=action_type,
        action_description=description,
        performed_by=actor.id,
        old_values=old_values,
        new_values=new_values,
    ))


def _jsonable(values: dict) -> dict:
    return {k: v.isoformat() if isinstance(v, (date, datetime)) else v for k, v in values.items()}


def _empty_page(page: int, size: int) -> dict:
    return {"items": [], "total": 0, "page": page, "size": size, "pages": 1}


# ── Categories ───────────────────────────────────────────────────────────────

@router.get("/categories/all")
async def list_categories(actor: Actor = Depends(get_current_actor),
                          db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(TaskCategory)
        .options(selectinload(TaskCategory.specialization))
        .where(TaskCategory.is_active.is_(True))
        .order_by(TaskCategory.name_ar)
    )
    return [_category_response(c) for c in result.scalars()]


@router.post("/categories", status_code=201)
async def create_category(body: TaskCategoryCreate,
                          actor: Actor = Depends(require_level(Role.DIRECT_MANAGER)),
                          db: AsyncSession = Depends(get_db)):
    if body.specialization_id is not None and await db.get(Specialization, body.specialization_id) is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "INVALID_SPECIALIZATION", "message": "Specialization does not exist"},
        )
    category = TaskCategory(**body.model_dump())
    db.add(category)
    await db.flush()
    logger.info("Task category created: %s by %s", category.name_en, actor.label)
    category = (await db.execute(
        select(TaskCategory).options(selectinload(TaskCategory.specialization)).where(TaskCategory.id == category.id)
    )).scalar_one()
    return _category_response(category)


# ── GET /api/tasks ───────────────────────────────────────────────────────────

@router.get("")
async def list_tasks(
    status: str | None = Query(None, pattern=_STATUS_PATTERN),
    priority: str | None = Query(None, pattern=_PRIORITY_PATTERN),
    category_id: int | None = Query(None),
    assigned_to: int | None = Query(None),
    client_id: int | None = Query(None),
    created_by: int | None = Query(None),
    overdue_only: bool = Query(False),
    sort: str = Query("created_at:desc"),
    page: int = Query(1, ge=1),
    size: int = Query(10, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """
    Tasks visible to the caller, matching the per-task access check:
      Owner / Direct Manager → all
      Team Leader            → created by, assigned to, or assigned within own department
      everyone else          → assigned to or created by the caller
    """
    query = select(Task).where(Task.deleted_at.is_(None))

    if actor.role not in (Role.OWNER, Role.DIRECT_MANAGER):
        visible = [Task.created_by == actor.id]
        if actor.employee_id is not None:
            visible.append(Task.assigned_to == actor.employee_id)
        if actor.role == Role.TEAM_LEADER:
            own_department = await actor_department(actor, db)
            if own_department is not None:
                visible.append(Task.assigned_to.in_(
                    select(Employee.id).where(Employee.department_id == own_department)
                ))
        query = query.where(or_(*visible))

    if status:
        query = query.where(Task.status == status)
    if priority:
        query = query.where(Task.priority == priority)
    if category_id is not None:
        query = query.where(Task.category_id == category_id)
    if assigned_to is not None:
        query = query.where(Task.assigned_to == assigned_to)
    if client_id is not None:
        query = query.where(Task.client_id == client_id)
    if created_by is not None:
        query = query.where(Task.created_by == created_by)
    if overdue_only:
        query = query.where(_overdue_clause())

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0

    sort_field, _, sort_order = sort.partition(":")
    column = SORT_FIELDS.get(sort_field, Task.created_at)
    order = column.asc() if sort_order == "asc" else column.desc()

    result = await db.execute(
        query.options(selectinload(Task.category))
        .order_by(order, Task.id.desc())
        .offset((page - 1) * size)
        .limit(size)
    )
    return {
        "items": [_task_response(t) for t in result.scalars()],
        "total": total,
        "page": page,
        "size": size,
        "pages": page_count(total, size),
    }


@router.get("/my-tasks")
async def my_tasks(
    status: str | None = Query(None, pattern=_STATUS_PATTERN),
    priority: str | None = Query(None, pattern=_PRIORITY_PATTERN),
    overdue_only: bool = Query(False),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Tasks assigned to the caller's employee profile, earliest due first."""
    if actor.employee_id is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "EMPLOYEE_NOT_FOUND", "message": "Employee profile not found"},
        )

    query = (
        select(Task)
        .options(selectinload(Task.category))
        .where(Task.assigned_to == actor.employee_id, Task.deleted_at.is_(None))
    )
    if status:
        query = query.where(Task.status == status)
    if priority:
        query = query.where(Task.priority == priority)
    if overdue_only:
        query = query.where(_overdue_clause())

    result = await db.execute(query.order_by(Task.due_date.asc().nulls_last(), Task.id))
    return [_task_response(t) for t in result.scalars()]


# ── Per-task routes ──────────────────────────────────────────────────────────

@router.get("/{task_id}")
async def get_task(task_id: int,
                   actor: Actor = Depends(guard_task),
                   db: AsyncSession = Depends(get_db)):
    """Task detail with comments (oldest first) and history (newest first)."""
    return _task_response(await _get_task_or_404(task_id, db, with_details=True), include_details=True)


@router.post("", status_code=201)
async def create_task(body: TaskCreate,
                      request: Request,
                      actor: Actor = Depends(require_permission("tasks", "create")),
                      db: AsyncSession = Depends(get_db),
                      hub: NotificationHub = Depends(get_hub)):
    fields = body.model_dump()
    await _validate_references(db, fields)
    await _check_assignment(db, actor, body.assigned_to)

    task = Task(**fields, status="new", progress_percentage=0, created_by=actor.id)
    db.add(task)
    await db.flush()

    _record_history(db, task.id, "CREATE", "Task created", actor)
    await AuditService(db).log_event(
        actor.id, "TASK_CREATE", "task", task.id,
        details={"assigned_to": task.assigned_to}, ip_address=client_ip(request),
    )
    if task.assigned_to is not None and task.assigned_to != actor.employee_id:
        await NotificationService(db, hub).notify_employee(
            task.assigned_to,
            "New task assigned",
            f"You have been assigned: {task.title}",
            type="task",
            data={"task_id": task.id},
        )

    logger.info("Task created: %s by %s", task.id, actor.label)
    return _task_response(await _get_task_or_404(task.id, db))


@router.put("/{task_id}")
async def update_task(task_id: int,
                      body: TaskUpdate,
                      request: Request,
                      actor: Actor = Depends(guard_task),
                      db: AsyncSession = Depends(get_db),
                      hub: NotificationHub = Depends(get_hub)):
    task = await _get_task_or_404(task_id, db)
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail={"code": "NO_CHANGES", "message": "No fields to update"})

    await _validate_references(db, changes)
    if "assigned_to" in changes and changes["assigned_to"] != task.assigned_to:
        await _check_assignment(db, actor, changes["assigned_to"])

    previous_assignee = task.assigned_to
    old_values = _jsonable({field: getattr(task, field) for field in changes})
    for field, value in changes.items():
        setattr(task, field, value)
    await db.flush()

    _record_history(db, task.id, "UPDATE", f"Updated: {', '.join(sorted(changes))}", actor,
                    old_values=old_values, new_values=_jsonable(changes))
    await AuditService(db).log_event(
        actor.id, "TASK_UPDATE", "task", task.id,
        details={"fields": sorted(changes)}, ip_address=client_ip(request),
    )

    notifications = NotificationService(db, hub)
    if task.assigned_to is not None and task.assigned_to != previous_assignee:
        await notifications.notify_employee(
            task.assigned_to,
            "New task assigned",
            f"You have been assigned: {task.title}",
            type="task",
            data={"task_id": task.id},
        )
    await notifications.push_task_update(task.assigned_to, {"task_id": task.id, "fields": sorted(changes)})

    logger.info("Task updated: %s by %s", task.id, actor.label)
    return _task_response(await _get_task_or_404(task_id, db))


@router.put("/{task_id}/status")
async def update_task_status(task_id: int,
                             body: TaskStatusUpdate,
                             request: Request,
                             actor: Actor = Depends(guard_task),
                             db: AsyncSession = Depends(get_db),
                             hub: NotificationHub = Depends(get_hub)):
    task = await _get_task_or_404(task_id, db)
    old_status = task.status

    task.status = body.status
    if body.progress_percentage is not None:
        task.progress_percentage = body.progress_percentage
    task.completed_at = datetime.utcnow() if body.status == "completed" else None
    await db.flush()

    _record_history(
        db, task.id, "STATUS_CHANGE", f"Status changed from {old_status} to {body.status}", actor,
        old_values={"status": old_status},
        new_values={"status": body.status, "progress_percentage": body.progress_percentage, "note": body.note},
    )
    await AuditService(db).log_event(
        actor.id, "TASK_STATUS", "task", task.id,
        details={"from": old_status, "to": body.status, "note": body.note},
        ip_address=client_ip(request),
    )

    if task.assigned_to is not None and task.assigned_to != actor.employee_id:
        await NotificationService(db, hub).notify_employee(
            task.assigned_to,
            "Task status updated",
            f"Task status changed to: {body.status}",
            type="task",
            data={"task_id": task.id, "status": body.status},
        )

    logger.info("Task status updated: %s %s -> %s by %s", task.id, old_status, body.status, actor.label)
    return _task_response(await _get_task_or_404(task_id, db))


@router.post("/{task_id}/comments", status_code=201)
async def add_comment(task_id: int,
                      body: TaskCommentCreate,
                      actor: Actor = Depends(guard_task),
                      db: AsyncSession = Depends(get_db),
                      hub: NotificationHub = Depends(get_hub)):
    task = await _get_task_or_404(task_id, db)

    comment = TaskComment(task_id=task.id, user_id=actor.id, content=body.content)
    db.add(comment)
    await db.flush()
    await db.refresh(comment)

    await NotificationService(db, hub).push_task_update(
        task.assigned_to, {"task_id": task.id, "comment_id": comment.id},
    )
    return {
        "id": comment.id,
        "task_id": task.id,
        "user_id": comment.user_id,
        "content": comment.content,
        "created_at": comment.created_at.isoformat() if comment.created_at else None,
    }
