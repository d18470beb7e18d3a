# routers/users.py — Firm user management and capability flags
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import EmailStr, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, CallerContext, CA_ROLES, get_current_user, require_firm,
    normalise_email, validate_new_password,
)
from database import get_db_session
from errors import Conflict, Forbidden, NotFound, ValidationError
from logging_system import add_audit
from models import User, UserRole, AuditEventType, CAPABILITY_FLAGS
from schemas import CamelModel, iso, enum_value

router = APIRouter(prefix="/api/users", tags=["Users"])


# --- Schemas ---

class UserCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    password: str
    role: str


class PermissionsUpdate(CamelModel):
    can_view_clients: Optional[bool] = None
    can_edit_clients: Optional[bool] = None
    can_access_documents: Optional[bool] = None
    can_access_tasks: Optional[bool] = None
    can_access_calendar: Optional[bool] = None
    can_access_chat: Optional[bool] = None


class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    email: Optional[EmailStr] = None


# --- Helpers ---

def user_out(u: User) -> dict:
    return {
        "id": u.id,
        "name": u.name,
        "email": u.email,
        "role": enum_value(u.role),
        "firmId": u.firm_id,
        "status": enum_value(u.status),
        "canViewClients": u.can_view_clients,
        "canEditClients": u.can_edit_clients,
        "canAccessDocuments": u.can_access_documents,
        "canAccessTasks": u.can_access_tasks,
        "canAccessCalendar": u.can_access_calendar,
        "canAccessChat": u.can_access_chat,
        "lastLoginAt": iso(u.last_login_at),
        "createdAt": iso(u.created_at),
    }


async def ensure_email_free(db: AsyncSession, email: str, exclude_user_id: Optional[str] = None) -> None:
    stmt = select(User.id).where(User.email == email)
    if exclude_user_id:
        stmt = stmt.where(User.id != exclude_user_id)
    if (await db.execute(stmt)).first() is not None:
        raise Conflict("Email already exists")


async def create_firm_user(db: AsyncSession, firm_id: str, data: UserCreate, actor: CallerContext) -> User:
    """Create a CA_ADMIN or CA_STAFF user inside a firm"""
    try:
        role = UserRole(data.role.upper())
    except ValueError:
        raise ValidationError(f"Invalid role: {data.role}")
    if role not in CA_ROLES:
        raise ValidationError("Role must be CA_ADMIN or CA_STAFF")
    validate_new_password(data.password)

    email = normalise_email(data.email)
    await ensure_email_free(db, email)

    user = User(
        name=data.name,
        email=email,
        password_hash=AuthService.hash_password(data.password),
        role=role,
        firm_id=firm_id,
    )
    db.add(user)
    await db.flush()
    add_audit(db, AuditEventType.USER_CREATED, actor.id, firm_id, "user", user.id, {"role": role.value})
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Email already exists")
    await db.refresh(user)
    return user


async def apply_permissions(db: AsyncSession, target: User, data: PermissionsUpdate, actor: CallerContext) -> User:
    """Apply only the flags present in the request; last write wins"""
    if target.role != UserRole.CA_STAFF:
        raise ValidationError("Permissions apply only to CA staff")
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    for flag in CAPABILITY_FLAGS:
        if flag in changes:
            setattr(target, flag, changes[flag])
    add_audit(
        db, AuditEventType.PERMISSIONS_CHANGED, actor.id, target.firm_id, "user", target.id,
        {"changes": changes},
    )
    await db.commit()
    await db.refresh(target)
    return target


# --- Endpoints ---

@router.get("")
async def list_users(
    role: Optional[str] = Query(default=None),
    caller: CallerContext = Depends(require_firm(*CA_ROLES)),
    db: AsyncSession = Depends(get_db_session),
):
    stmt = select(User).where(User.firm_id == caller.firm_id).order_by(User.created_at.asc())
    if role:
        try:
            stmt = stmt.where(User.role == UserRole(role.upper()))
        except ValueError:
            raise ValidationError(f"Invalid role: {role}")
    result = await db.execute(stmt)
    return [user_out(u) for u in result.scalars().all()]


@router.post("", status_code=201)
async def create_user(
    data: UserCreate,
    caller: CallerContext = Depends(require_firm(UserRole.CA_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
):
    user = await create_firm_user(db, caller.firm_id, data, caller)
    return user_out(user)


@router.patch("/{user_id}/permissions")
async def update_permissions(
    user_id: str,
    data: PermissionsUpdate,
    caller: CallerContext = Depends(require_firm(UserRole.CA_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
):
    result = await db.execute(
        select(User).where(User.id == user_id, User.firm_id == caller.firm_id)
    )
    target = result.scalar_one_or_none()
    if not target:
        raise NotFound("User not found")
    target = await apply_permissions(db, target, data, caller)
    return user_out(target)


@router.put("/{user_id}")
async def update_profile(
    user_id: str,
    data: ProfileUpdate,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Update the caller's own name and email"""
    if user_id != caller.id:
        raise Forbidden("You can only update your own profile")

    user = await db.get(User, caller.id)
    if data.name is not None:
        user.name = data.name
    if data.email is not None:
        email = normalise_email(data.email)
        await ensure_email_free(db, email, exclude_user_id=user.id)
        user.email = email
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Email already exists")
    await db.refresh(user)
    return user_out(user)
