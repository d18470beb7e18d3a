# routers/auth.py — Login, token refresh, current user and password change
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, CallerContext, get_current_user, validate_new_password,
)
from database import get_db_session
from errors import Unauthorized
from logging_system import add_audit
from models import User, UserStatus, AuditEventType
from schemas import CamelModel

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


# --- Schemas ---

class LoginRequest(CamelModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RefreshRequest(CamelModel):
    refresh_token: str


class ChangePasswordRequest(CamelModel):
    current_password: str
    new_password: str


async def _build_token_response(user: User, db: AsyncSession) -> Dict[str, Any]:
    return {
        "accessToken": AuthService.create_access_token(user.id),
        "refreshToken": AuthService.create_refresh_token(user.id),
        "user": await AuthService.user_projection(user, db),
    }


# --- Endpoints ---

@router.post("/login")
async def login(
    credentials: LoginRequest,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and receive tokens"""
    user = await AuthService.authenticate_user(credentials.email, credentials.password, db)
    if not user:
        raise Unauthorized("Invalid credentials")
    return await _build_token_response(user, db)


@router.post("/refresh")
async def refresh_token(
    refresh_req: RefreshRequest,
    db: AsyncSession = Depends(get_db_session),
):
    """Exchange a refresh token for a new token pair"""
    payload = AuthService.verify_token(refresh_req.refresh_token, "refresh")

    result = await db.execute(select(User).where(User.id == payload["sub"]))
    user = result.scalar_one_or_none()
    if not user or user.status != UserStatus.ACTIVE:
        raise Unauthorized("User not found or inactive")

    return await _build_token_response(user, db)


@router.get("/me")
async def get_current_user_info(
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    user = await db.get(User, caller.id)
    return await AuthService.user_projection(user, db)


@router.post("/change-password")
async def change_password(
    password_data: ChangePasswordRequest,
    caller: CallerContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Change current user's password"""
    user_obj = await db.get(User, caller.id)

    if not AuthService.verify_password(password_data.current_password, user_obj.password_hash):
        raise Unauthorized("Current password is incorrect")

    validate_new_password(password_data.new_password)
    user_obj.password_hash = AuthService.hash_password(password_data.new_password)
    add_audit(db, AuditEventType.PASSWORD_CHANGED, caller.id, caller.firm_id, "user", caller.id)
    await db.commit()

    return {"message": "Password updated successfully"}
