# routers/tasks.py — Compliance tasks: listing, creation, lifecycle, assignment, comments
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from auth import CallerContext, CA_ROLES, require_capability
from database import get_db_session
from errors import NotFound, ValidationError
from lifecycle import parse_task_status, check_transition
from logging_system import add_audit
from models import (
    ComplianceTask, ComplianceType, TaskComment, CalendarEvent, User, UserRole, UserStatus,
    TaskStatus, EventSource, NotificationType, AuditEventType,
)
from routers.notifications import notify
from schemas import CamelModel, as_utc, iso, enum_value
from tenancy import scoped, require_client_in_scope, require_task_in_scope

router = APIRouter(prefix="/api/tasks", tags=["Compliance Tasks"])

tasks_access = require_capability("can_access_tasks")
tasks_manage = require_capability("can_access_tasks", *CA_ROLES)


# ============================================================
# SCHEMAS
# ============================================================

class TaskCreate(CamelModel):
    client_id: str
    compliance_type_id: str
    period_start: datetime
    period_end: datetime
    due_date: datetime
    assigned_to_user_id: Optional[str] = None


class StatusUpdate(CamelModel):
    status: str


class AssignUpdate(CamelModel):
    assigned_to_user_id: Optional[str] = None


class CommentCreate(CamelModel):
    message: str = Field(..., min_length=1, max_length=5000)


# ============================================================
# HELPERS
# ============================================================

def _compliance_type_out(ct: ComplianceType) -> dict:
    return {
        "id": ct.id,
        "code": ct.code,
        "displayName": ct.display_name,
        "frequency": enum_value(ct.frequency),
        "meta": ct.meta or {},
    }


def _comment_out(c: TaskComment) -> dict:
    return {
        "id": c.id,
        "taskId": c.task_id,
        "authorUserId": c.author_user_id,
        "authorName": c.author.name if c.author else None,
        "message": c.message,
        "createdAt": iso(c.created_at),
    }


def task_out(t: ComplianceTask, with_comments: bool = False) -> dict:
    out = {
        "id": t.id,
        "firmId": t.firm_id,
        "clientId": t.client_id,
        "complianceTypeId": t.compliance_type_id,
        "periodStart": iso(t.period_start),
        "periodEnd": iso(t.period_end),
        "dueDate": iso(t.due_date),
        "status": enum_value(t.status),
        "assignedToUserId": t.assigned_to_user_id,
        "createdByUserId": t.created_by_user_id,
        "createdAt": iso(t.created_at),
        "updatedAt": iso(t.updated_at),
        "complianceType": _compliance_type_out(t.compliance_type) if t.compliance_type else None,
        "client": {"id": t.client.id, "displayName": t.client.display_name} if t.client else None,
        "assignedTo": {"id": t.assigned_to.id, "name": t.assigned_to.name} if t.assigned_to else None,
    }
    if with_comments:
        out["comments"] = [_comment_out(c) for c in t.comments]
    return out


TASK_LOAD_OPTIONS = (
    selectinload(ComplianceTask.compliance_type),
    selectinload(ComplianceTask.client),
    selectinload(ComplianceTask.assigned_to),
)


async def _load_task(db: AsyncSession, task_id: str, with_comments: bool = False) -> ComplianceTask:
    options = list(TASK_LOAD_OPTIONS)
    if with_comments:
        options.append(selectinload(ComplianceTask.comments).selectinload(TaskComment.author))
    result = await db.execute(
        select(ComplianceTask)
        .where(ComplianceTask.id == task_id)
        .options(*options)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _require_assignee(db: AsyncSession, caller: CallerContext, user_id: str) -> User:
    result = await db.execute(
        select(User).where(
            User.id == user_id,
            User.firm_id == caller.firm_id,
            User.role.in_([UserRole.CA_ADMIN, UserRole.CA_STAFF]),
            User.status == UserStatus.ACTIVE,
        )
    )
    assignee = result.scalar_one_or_none()
    if assignee is None:
        raise ValidationError("Assignee must be an active CA user of the firm")
    return assignee


# ============================================================
# READ
# ============================================================

@router.get("")
async def list_tasks(
    status: Optional[str] = Query(default=None),
    client_id: Optional[str] = Query(default=None, alias="clientId"),
    caller: CallerContext = Depends(tasks_access),
    db: AsyncSession = Depends(get_db_session),
):
    stmt = scoped(select(ComplianceTask), ComplianceTask, caller, client_id)
    if status:
        stmt = stmt.where(ComplianceTask.status == parse_task_status(status))
    stmt = stmt.options(*TASK_LOAD_OPTIONS).order_by(ComplianceTask.due_date.asc())
    result = await db.execute(stmt)
    return [task_out(t) for t in result.scalars().all()]


@router.get("/compliance-types")
async def list_compliance_types(
    caller: CallerContext = Depends(tasks_access),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(select(ComplianceType).order_by(ComplianceType.display_name.asc()))
    return [_compliance_type_out(ct) for ct in result.scalars().all()]


@router.get("/{task_id}")
async def get_task(
    task_id: str,
    caller: CallerContext = Depends(tasks_access),
    db: AsyncSession = Depends(get_db_session),
):
    await require_task_in_scope(db, caller, task_id)
    task = await _load_task(db, task_id, with_comments=True)
    return task_out(task, with_comments=True)


# ============================================================
# CREATE
# ============================================================

@router.post("", status_code=201)
async def create_task(
    data: TaskCreate,
    caller: CallerContext = Depends(tasks_manage),
    db: AsyncSession = Depends(get_db_session),
):
    period_start = as_utc(data.period_start)
    period_end = as_utc(data.period_end)
    due_date = as_utc(data.due_date)
    if period_end < period_start:
        raise ValidationError("periodEnd must not be before periodStart")

    client = await require_client_in_scope(db, caller, data.client_id)

    compliance_type = await db.get(ComplianceType, data.compliance_type_id)
    if compliance_type is None:
        raise NotFound("Compliance type not found")

    assignee = None
    if data.assigned_to_user_id:
        assignee = await _require_assignee(db, caller, data.assigned_to_user_id)

    task = ComplianceTask(
        firm_id=caller.firm_id,
        client_id=client.id,
        compliance_type_id=compliance_type.id,
        period_start=period_start,
        period_end=period_end,
        due_date=due_date,
        status=TaskStatus.PENDING,
        assigned_to_user_id=assignee.id if assignee else None,
        created_by_user_id=caller.id,
    )
    db.add(task)
    await db.flush()

    # Due date mirrored onto the firm calendar
    db.add(CalendarEvent(
        firm_id=caller.firm_id,
        client_id=client.id,
        title=f"{compliance_type.display_name} due: {client.display_name}",
        description=f"Compliance deadline for {client.display_name}",
        start_at=due_date,
        end_at=due_date,
        source=EventSource.SYSTEM,
        related_task_id=task.id,
    ))

    payload = {
        "taskId": task.id,
        "clientId": client.id,
        "complianceType": compliance_type.code,
        "dueDate": iso(due_date),
    }
    notify(db, client.primary_user_id, NotificationType.TASK_ASSIGNED, payload)
    if assignee and assignee.id != client.primary_user_id:
        notify(db, assignee.id, NotificationType.TASK_ASSIGNED, payload)

    add_audit(
        db, AuditEventType.TASK_CREATED, caller.id, caller.firm_id, "compliance_task", task.id,
        {"clientId": client.id, "complianceType": compliance_type.code},
    )
    await db.commit()

    return task_out(await _load_task(db, task.id))


# ============================================================
# LIFECYCLE
# ============================================================

@router.patch("/{task_id}/status")
async def update_task_status(
    task_id: str,
    data: StatusUpdate,
    caller: CallerContext = Depends(tasks_manage),
    db: AsyncSession = Depends(get_db_session),
):
    target = parse_task_status(data.status)
    task = await require_task_in_scope(db, caller, task_id)

    if check_transition(task.status, target):
        previous = task.status
        task.status = target
        add_audit(
            db, AuditEventType.TASK_STATUS_CHANGED, caller.id, caller.firm_id, "compliance_task", task.id,
            {"from": previous.value, "to": target.value},
        )
        if target == TaskStatus.FILED:
            client = await require_client_in_scope(db, caller, task.client_id)
            notify(db, client.primary_user_id, NotificationType.FILING_COMPLETED, {
                "taskId": task.id,
                "clientId": client.id,
            })
        await db.commit()

    return {"message": "Status updated", "status": target.value}


@router.patch("/{task_id}/assign")
async def assign_task(
    task_id: str,
    data: AssignUpdate,
    caller: CallerContext = Depends(tasks_manage),
    db: AsyncSession = Depends(get_db_session),
):
    task = await require_task_in_scope(db, caller, task_id)

    assignee = None
    if data.assigned_to_user_id:
        assignee = await _require_assignee(db, caller, data.assigned_to_user_id)

    task.assigned_to_user_id = assignee.id if assignee else None
    add_audit(
        db, AuditEventType.TASK_ASSIGNED, caller.id, caller.firm_id, "compliance_task", task.id,
        {"assignedToUserId": task.assigned_to_user_id},
    )
    if assignee:
        notify(db, assignee.id, NotificationType.TASK_ASSIGNED, {
            "taskId": task.id,
            "clientId": task.client_id,
            "dueDate": iso(task.due_date),
        })
    await db.commit()

    return task_out(await _load_task(db, task.id))


# ============================================================
# COMMENTS
# ============================================================

@router.post("/{task_id}/comments", status_code=201)
async def add_comment(
    task_id: str,
    data: CommentCreate,
    caller: CallerContext = Depends(tasks_access),
    db: AsyncSession = Depends(get_db_session),
):
    task = await require_task_in_scope(db, caller, task_id)
    comment = TaskComment(task_id=task.id, author_user_id=caller.id, message=data.message)
    db.add(comment)
    await db.commit()
    return {
        "id": comment.id,
        "taskId": comment.task_id,
        "authorUserId": comment.author_user_id,
        "authorName": caller.name,
        "message": comment.message,
        "createdAt": iso(comment.created_at),
    }
