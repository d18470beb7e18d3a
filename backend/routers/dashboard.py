# routers/dashboard.py — Summary views for firm staff and for clients
from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CallerContext, CA_ROLES, require_firm
from database import get_db_session
from errors import ValidationError
from models import (
    ComplianceTask, Document, DocumentStatus, Notification, TaskStatus, UserRole, utcnow,
)
from routers.notifications import notification_out
from routers.tasks import task_out, TASK_LOAD_OPTIONS

router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])

OPEN_STATUSES = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)
UPCOMING_WINDOW_DAYS = 30
RECENT_LIMIT = 5


async def _count(db: AsyncSession, stmt) -> int:
    return (await db.execute(stmt)).scalar() or 0


async def _recent(db: AsyncSession, caller: CallerContext, *conditions):
    tasks = (await db.execute(
        select(ComplianceTask)
        .where(*conditions)
        .options(*TASK_LOAD_OPTIONS)
        .order_by(ComplianceTask.due_date.asc())
        .limit(RECENT_LIMIT)
    )).scalars().all()
    notifications = (await db.execute(
        select(Notification)
        .where(Notification.user_id == caller.id)
        .order_by(Notification.created_at.desc())
        .limit(RECENT_LIMIT)
    )).scalars().all()
    return [task_out(t) for t in tasks], [notification_out(n) for n in notifications]


@router.get("")
async def firm_dashboard(
    caller: CallerContext = Depends(require_firm(*CA_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    now = utcnow()
    in_firm = ComplianceTask.firm_id == caller.firm_id
    is_open = ComplianceTask.status.in_(OPEN_STATUSES)

    pending_clients = await _count(db, (
        select(func.count(func.distinct(ComplianceTask.client_id))).where(in_firm, is_open)
    ))
    upcoming = await _count(db, (
        select(func.count(ComplianceTask.id)).where(
            in_firm, is_open,
            ComplianceTask.due_date >= now,
            ComplianceTask.due_date <= now + timedelta(days=UPCOMING_WINDOW_DAYS),
        )
    ))
    pending_tasks = await _count(db, select(func.count(ComplianceTask.id)).where(in_firm, is_open))

    recent_tasks, notifications = await _recent(db, caller, in_firm)
    return {
        "stats": {
            "pendingClients": pending_clients,
            "upcomingDeadlines": upcoming,
            "pendingTasks": pending_tasks,
        },
        "recentTasks": recent_tasks,
        "notifications": notifications,
    }


@router.get("/client")
async def client_dashboard(
    caller: CallerContext = Depends(require_firm(UserRole.CLIENT)),
    db: AsyncSession = Depends(get_db_session),
):
    if not caller.client_id:
        raise ValidationError("Client context required")

    own = ComplianceTask.client_id == caller.client_id

    async def _status_count(*statuses) -> int:
        return await _count(db, select(func.count(ComplianceTask.id)).where(
            own, ComplianceTask.status.in_(statuses)
        ))

    uploaded = await _count(db, select(func.count(Document.id)).where(
        Document.client_id == caller.client_id,
        Document.status == DocumentStatus.UPLOADED,
    ))

    recent_tasks, notifications = await _recent(db, caller, own)
    return {
        "stats": {
            "pendingTasks": await _status_count(*OPEN_STATUSES),
            "uploadedDocuments": uploaded,
            "filingStatus": {
                "pending": await _status_count(TaskStatus.PENDING),
                "inProgress": await _status_count(TaskStatus.IN_PROGRESS),
                "filed": await _status_count(TaskStatus.FILED),
                "approved": await _status_count(TaskStatus.APPROVED),
            },
        },
        "recentTasks": recent_tasks,
        "notifications": notifications,
    }
