# routers/clients.py — Client register for a firm
# Creating a client also creates its CLIENT login; both rows commit together.
import secrets
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import EmailStr, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from auth import AuthService, CallerContext, CA_ROLES, require_capability, normalise_email
from database import get_db_session
from errors import Conflict, ValidationError
from logging_system import add_audit
from models import Client, ClientType, User, UserRole, AuditEventType
from schemas import CamelModel, iso, enum_value
from tenancy import require_client_in_scope

logger = logging.getLogger("ca-portal.clients")

router = APIRouter(prefix="/api/clients", tags=["Clients"])


# ============================================================
# SCHEMAS
# ============================================================

class ClientCreate(CamelModel):
    display_name: str = Field(..., min_length=1, max_length=200)
    type: str
    pan: Optional[str] = None
    gstin: Optional[str] = None
    cin: Optional[str] = None
    contact_name: str = Field(..., min_length=1, max_length=200)
    contact_email: EmailStr


class ClientUpdate(CamelModel):
    display_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    type: Optional[str] = None
    pan: Optional[str] = None
    gstin: Optional[str] = None
    cin: Optional[str] = None
    contact_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    contact_email: Optional[EmailStr] = None


# ============================================================
# HELPERS
# ============================================================

def _client_out(c: Client, primary_user: Optional[User] = None) -> dict:
    u = primary_user or c.primary_user
    return {
        "id": c.id,
        "firmId": c.firm_id,
        "displayName": c.display_name,
        "type": enum_value(c.type),
        "pan": c.pan,
        "gstin": c.gstin,
        "cin": c.cin,
        "createdAt": iso(c.created_at),
        "primaryUser": {"id": u.id, "name": u.name, "email": u.email} if u else None,
    }


def _parse_client_type(value: str) -> ClientType:
    try:
        return ClientType(value.upper())
    except ValueError:
        raise ValidationError(f"Invalid client type: {value}")


def _clean_id_number(value: Optional[str]) -> Optional[str]:
    # PAN/GSTIN/CIN are stored upper-case; blanks mean "not provided"
    if value is None:
        return None
    value = value.strip().upper()
    return value or None


def _conflict_from(exc: IntegrityError) -> Conflict:
    message = str(exc.orig).lower()
    if "pan" in message:
        return Conflict("A client with this PAN already exists in the firm")
    if "email" in message:
        return Conflict("Email already exists")
    return Conflict("Client conflicts with an existing record")


async def _load_client(db: AsyncSession, caller: CallerContext, client_id: str) -> Client:
    await require_client_in_scope(db, caller, client_id)
    result = await db.execute(
        select(Client)
        .where(Client.id == client_id)
        .options(selectinload(Client.primary_user))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


# ============================================================
# ENDPOINTS
# ============================================================

@router.get("")
async def list_clients(
    caller: CallerContext = Depends(require_capability("can_view_clients")),
    db: AsyncSession = Depends(get_db_session),
):
    stmt = (
        select(Client)
        .where(Client.firm_id == caller.firm_id)
        .options(selectinload(Client.primary_user))
        .order_by(Client.display_name.asc())
    )
    if caller.is_client:
        stmt = stmt.where(Client.id == caller.client_id)
    result = await db.execute(stmt)
    return [_client_out(c) for c in result.scalars().all()]


@router.get("/{client_id}")
async def get_client(
    client_id: str,
    caller: CallerContext = Depends(require_capability("can_view_clients")),
    db: AsyncSession = Depends(get_db_session),
):
    client = await _load_client(db, caller, client_id)
    return _client_out(client)


@router.post("", status_code=201)
async def create_client(
    data: ClientCreate,
    caller: CallerContext = Depends(require_capability("can_edit_clients", *CA_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a client and its CLIENT user in one transaction"""
    client_type = _parse_client_type(data.type)

    # Clients receive a random password and reset it before first use
    temp_password = secrets.token_urlsafe(16)
    user = User(
        name=data.contact_name,
        email=normalise_email(data.contact_email),
        password_hash=AuthService.hash_password(temp_password),
        role=UserRole.CLIENT,
        firm_id=caller.firm_id,
    )
    try:
        db.add(user)
        await db.flush()

        client = Client(
            firm_id=caller.firm_id,
            primary_user_id=user.id,
            display_name=data.display_name,
            type=client_type,
            pan=_clean_id_number(data.pan),
            gstin=_clean_id_number(data.gstin),
            cin=_clean_id_number(data.cin),
        )
        db.add(client)
        await db.flush()

        add_audit(
            db, AuditEventType.CLIENT_CREATED, caller.id, caller.firm_id, "client", client.id,
            {"displayName": client.display_name, "primaryUserId": user.id},
        )
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.info(f"Client creation rolled back: {e.orig}")
        raise _conflict_from(e)

    await db.refresh(client)
    await db.refresh(user)
    return _client_out(client, user)


@router.put("/{client_id}")
async def update_client(
    client_id: str,
    data: ClientUpdate,
    caller: CallerContext = Depends(require_capability("can_edit_clients", *CA_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    client = await _load_client(db, caller, client_id)
    changes = data.model_dump(exclude_unset=True, exclude_none=True)

    if "display_name" in changes:
        client.display_name = changes["display_name"]
    if "type" in changes:
        client.type = _parse_client_type(changes["type"])
    for field in ("pan", "gstin", "cin"):
        if field in changes:
            setattr(client, field, _clean_id_number(changes[field]))

    contact = client.primary_user
    if "contact_name" in changes:
        contact.name = changes["contact_name"]
    if "contact_email" in changes:
        contact.email = normalise_email(changes["contact_email"])

    add_audit(
        db, AuditEventType.CLIENT_UPDATED, caller.id, caller.firm_id, "client", client.id,
        {"fields": sorted(changes.keys())},
    )
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise _conflict_from(e)

    return _client_out(await _load_client(db, caller, client_id))
