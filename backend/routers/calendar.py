# routers/calendar.py — Firm calendar: manual events plus system deadline events
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from auth import CallerContext, CA_ROLES, require_capability
from database import get_db_session
from errors import NotFound, ValidationError
from models import CalendarEvent, EventSource
from schemas import CamelModel, as_utc, iso, enum_value
from tenancy import require_client_in_scope

router = APIRouter(prefix="/api/calendar", tags=["Calendar"])

calendar_access = require_capability("can_access_calendar")
calendar_manage = require_capability("can_access_calendar", *CA_ROLES)


class EventCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = None
    start_at: datetime
    end_at: datetime
    client_id: Optional[str] = None


def _event_out(e: CalendarEvent) -> dict:
    client = e.__dict__.get("client")
    return {
        "id": e.id,
        "firmId": e.firm_id,
        "clientId": e.client_id,
        "title": e.title,
        "description": e.description,
        "startAt": iso(e.start_at),
        "endAt": iso(e.end_at),
        "source": enum_value(e.source),
        "relatedTaskId": e.related_task_id,
        "client": {"id": client.id, "displayName": client.display_name} if client else None,
    }


@router.get("/events")
async def list_events(
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    client_id: Optional[str] = Query(default=None, alias="clientId"),
    caller: CallerContext = Depends(calendar_access),
    db: AsyncSession = Depends(get_db_session),
):
    stmt = select(CalendarEvent).where(CalendarEvent.firm_id == caller.firm_id)
    if caller.is_client:
        stmt = stmt.where(CalendarEvent.client_id == caller.client_id)
    elif client_id:
        # Firm-wide events (no client) stay visible next to the client's own
        stmt = stmt.where(or_(CalendarEvent.client_id == client_id, CalendarEvent.client_id.is_(None)))

    if start_date and end_date:
        stmt = stmt.where(
            CalendarEvent.start_at >= as_utc(start_date),
            CalendarEvent.start_at <= as_utc(end_date),
        )

    stmt = stmt.options(selectinload(CalendarEvent.client)).order_by(CalendarEvent.start_at.asc())
    result = await db.execute(stmt)
    return [_event_out(e) for e in result.scalars().all()]


@router.post("/events", status_code=201)
async def create_event(
    data: EventCreate,
    caller: CallerContext = Depends(calendar_manage),
    db: AsyncSession = Depends(get_db_session),
):
    start_at = as_utc(data.start_at)
    end_at = as_utc(data.end_at)
    if end_at < start_at:
        raise ValidationError("endAt must not be before startAt")

    if data.client_id:
        await require_client_in_scope(db, caller, data.client_id)

    event = CalendarEvent(
        firm_id=caller.firm_id,
        client_id=data.client_id,
        title=data.title,
        description=data.description,
        start_at=start_at,
        end_at=end_at,
        source=EventSource.MANUAL,
    )
    db.add(event)
    await db.commit()
    return _event_out(event)


@router.delete("/events/{event_id}")
async def delete_event(
    event_id: str,
    caller: CallerContext = Depends(calendar_manage),
    db: AsyncSession = Depends(get_db_session),
):
    """Only MANUAL events of the caller's firm can be deleted"""
    result = await db.execute(
        select(CalendarEvent).where(
            CalendarEvent.id == event_id,
            CalendarEvent.firm_id == caller.firm_id,
            CalendarEvent.source == EventSource.MANUAL,
        )
    )
    event = result.scalar_one_or_none()
    if not event:
        raise NotFound("Event not found or cannot be deleted")
    await db.delete(event)
    await db.commit()
    return {"message": "Event deleted"}
