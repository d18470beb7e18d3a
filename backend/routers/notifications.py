# routers/notifications.py — In-app notifications, always scoped to the caller
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CallerContext
from database import get_db_session
from errors import NotFound
from models import Notification, NotificationType, utcnow
from schemas import iso, enum_value

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])

LIST_LIMIT = 50


def notify(db: AsyncSession, user_id: str, kind: NotificationType, payload: Dict[str, Any]) -> Notification:
    """Stage a notification; committed together with the change that caused it"""
    notif = Notification(user_id=user_id, type=kind, payload=payload)
    db.add(notif)
    return notif


def notification_out(n: Notification) -> dict:
    return {
        "id": n.id,
        "userId": n.user_id,
        "type": enum_value(n.type),
        "payload": n.payload or {},
        "readAt": iso(n.read_at),
        "createdAt": iso(n.created_at),
    }


# ============================================================
# LIST
# ============================================================

@router.get("")
async def list_notifications(
    unread_only: bool = Query(default=False, alias="unreadOnly"),
    db: AsyncSession = Depends(get_db_session),
    caller: CallerContext = Depends(get_current_user),
):
    query = select(Notification).where(Notification.user_id == caller.id)
    if unread_only:
        query = query.where(Notification.read_at.is_(None))
    query = query.order_by(Notification.created_at.desc()).limit(LIST_LIMIT)
    result = await db.execute(query)
    return [notification_out(n) for n in result.scalars().all()]


# ============================================================
# MARK READ
# ============================================================

@router.post("/read-all")
async def mark_all_read(
    db: AsyncSession = Depends(get_db_session),
    caller: CallerContext = Depends(get_current_user),
):
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == caller.id, Notification.read_at.is_(None))
        .values(read_at=utcnow())
    )
    await db.commit()
    return {"marked": result.rowcount or 0}


@router.post("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    db: AsyncSession = Depends(get_db_session),
    caller: CallerContext = Depends(get_current_user),
):
    result = await db.execute(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == caller.id,
        )
    )
    notif = result.scalar_one_or_none()
    if not notif:
        raise NotFound("Notification not found")
    if notif.read_at is None:
        notif.read_at = utcnow()
        await db.commit()
    return notification_out(notif)
