# routers/admin.py — Platform administration (SUPER_ADMIN only)
from collections import defaultdict
from typing import Optional

from fastapi import APIRouter, Depends, Response
from pydantic import Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AuthService, CallerContext, require_role, validate_new_password
from database import get_db_session
from errors import Conflict, NotFound
from logging_system import add_audit
from models import Firm, User, UserRole, AuditEventType
from routers.users import (
    UserCreate, PermissionsUpdate, user_out, create_firm_user, apply_permissions,
)
from schemas import CamelModel, iso

router = APIRouter(prefix="/api/admin", tags=["Administration"])

require_super_admin = require_role(UserRole.SUPER_ADMIN)


# --- Schemas ---

class FirmCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    gstin: Optional[str] = None
    address: Optional[str] = None


class PasswordReset(CamelModel):
    password: str


def _firm_out(f: Firm, ca_admins=None) -> dict:
    return {
        "id": f.id,
        "name": f.name,
        "gstin": f.gstin,
        "address": f.address,
        "createdAt": iso(f.created_at),
        "users": [
            {"id": u.id, "name": u.name, "email": u.email, "role": u.role.value}
            for u in (ca_admins or [])
        ],
    }


async def _get_firm(db: AsyncSession, firm_id: str) -> Firm:
    firm = await db.get(Firm, firm_id)
    if not firm:
        raise NotFound("Firm not found")
    return firm


async def _get_user(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    return user


# ============================================================
# FIRMS
# ============================================================

@router.get("/firms")
async def list_firms(
    caller: CallerContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
):
    """All firms with their CA admins, newest first"""
    firms = (await db.execute(select(Firm).order_by(Firm.created_at.desc()))).scalars().all()
    admins = (await db.execute(
        select(User).where(User.role == UserRole.CA_ADMIN).order_by(User.created_at.asc())
    )).scalars().all()

    by_firm = defaultdict(list)
    for u in admins:
        by_firm[u.firm_id].append(u)
    return [_firm_out(f, by_firm.get(f.id)) for f in firms]


@router.post("/firms", status_code=201)
async def create_firm(
    data: FirmCreate,
    caller: CallerContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
):
    firm = Firm(name=data.name, gstin=data.gstin or None, address=data.address)
    db.add(firm)
    try:
        await db.flush()
        add_audit(db, AuditEventType.FIRM_CREATED, caller.id, firm.id, "firm", firm.id, {"name": firm.name})
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("A firm with this GSTIN already exists")
    await db.refresh(firm)
    return _firm_out(firm)


@router.get("/firms/{firm_id}/users")
async def list_firm_users(
    firm_id: str,
    caller: CallerContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
):
    await _get_firm(db, firm_id)
    result = await db.execute(
        select(User).where(User.firm_id == firm_id).order_by(User.created_at.asc())
    )
    return [user_out(u) for u in result.scalars().all()]


@router.post("/firms/{firm_id}/users", status_code=201)
async def create_user_in_firm(
    firm_id: str,
    data: UserCreate,
    caller: CallerContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
):
    firm = await _get_firm(db, firm_id)
    user = await create_firm_user(db, firm.id, data, caller)
    return user_out(user)


# ============================================================
# USERS
# ============================================================

@router.patch("/users/{user_id}/permissions")
async def update_user_permissions(
    user_id: str,
    data: PermissionsUpdate,
    caller: CallerContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
):
    target = await _get_user(db, user_id)
    target = await apply_permissions(db, target, data, caller)
    return user_out(target)


@router.patch("/users/{user_id}/password", status_code=204)
async def reset_user_password(
    user_id: str,
    data: PasswordReset,
    caller: CallerContext = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db_session),
):
    target = await _get_user(db, user_id)
    validate_new_password(data.password)
    target.password_hash = AuthService.hash_password(data.password)
    add_audit(db, AuditEventType.PASSWORD_RESET, caller.id, target.firm_id, "user", target.id)
    await db.commit()
    return Response(status_code=204)
