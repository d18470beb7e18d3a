# auth.py — Authentication & authorization for the CA Practice Portal
# Features:
# - HS256 JWT access/refresh pair signed with separate secrets
# - Tokens carry identity only (sub, type, jti, iat, exp)
# - Caller context re-read from the database on every request
# - 4-role RBAC plus per-user capability flags for firm staff
# - Brute force protection and uniform login failures

import os
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from collections import defaultdict

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from errors import Unauthorized, Forbidden, ValidationError, TooManyAttempts
from logging_system import add_audit
from models import User, Client, Firm, UserRole, UserStatus, AuditEventType, CAPABILITY_FLAGS

logger = logging.getLogger("ca-portal.auth")

# ============================================================
# CONFIGURATION
# ============================================================


def _load_secret(env_name: str) -> str:
    value = os.getenv(env_name, "")
    if not value:
        value = secrets.token_urlsafe(64)
        logger.warning(f"{env_name} not set. Generated ephemeral key. Set {env_name} in production!")
    return value


SECRET_KEY = _load_secret("JWT_SECRET_KEY")
REFRESH_SECRET_KEY = _load_secret("JWT_REFRESH_SECRET_KEY")

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
MIN_PASSWORD_LENGTH = 8
MAX_LOGIN_ATTEMPTS = 5
LOGIN_LOCKOUT_MINUTES = 15

security = HTTPBearer(auto_error=False)

# In-memory brute force tracker, per process
_login_attempts: Dict[str, list] = defaultdict(list)

CA_ROLES = (UserRole.CA_ADMIN, UserRole.CA_STAFF)


# ============================================================
# CALLER CONTEXT
# ============================================================

class CallerContext(BaseModel):
    """Authenticated caller, rebuilt from the user row on every request"""
    id: str
    name: str
    email: str
    role: UserRole
    firm_id: Optional[str] = None
    client_id: Optional[str] = None
    can_view_clients: bool = False
    can_edit_clients: bool = False
    can_access_documents: bool = False
    can_access_tasks: bool = False
    can_access_calendar: bool = False
    can_access_chat: bool = False

    @property
    def is_client(self) -> bool:
        return self.role == UserRole.CLIENT

    @property
    def is_ca(self) -> bool:
        return self.role in CA_ROLES

    def has_capability(self, flag: str) -> bool:
        if self.role in (UserRole.CA_ADMIN, UserRole.CLIENT):
            return True
        if self.role == UserRole.CA_STAFF:
            return bool(getattr(self, flag, False))
        return False


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Password hashing, token issuance and credential checks"""

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def _create_token(user_id: str, token_type: str, expires_delta: timedelta, secret: str) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "sub": user_id,
            "type": token_type,
            "jti": str(uuid.uuid4()),
            "iat": now,
            "exp": now + expires_delta,
        }
        return jwt.encode(claims, secret, algorithm=ALGORITHM)

    @staticmethod
    def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
        delta = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
        return AuthService._create_token(user_id, "access", delta, SECRET_KEY)

    @staticmethod
    def create_refresh_token(user_id: str) -> str:
        return AuthService._create_token(
            user_id, "refresh", timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS), REFRESH_SECRET_KEY
        )

    @staticmethod
    def verify_token(token: str, token_type: str = "access") -> Dict[str, Any]:
        secret = REFRESH_SECRET_KEY if token_type == "refresh" else SECRET_KEY
        try:
            payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
        except ExpiredSignatureError:
            raise Unauthorized("Token expired")
        except JWTError:
            raise Unauthorized("Invalid token")
        if payload.get("type") != token_type:
            raise Unauthorized("Invalid token type")
        if not payload.get("sub"):
            raise Unauthorized("Invalid token")
        return payload

    @staticmethod
    def _check_brute_force(email: str) -> None:
        """Check if login attempts exceed threshold"""
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(minutes=LOGIN_LOCKOUT_MINUTES)
        _login_attempts[email] = [t for t in _login_attempts[email] if t > cutoff]
        if len(_login_attempts[email]) >= MAX_LOGIN_ATTEMPTS:
            raise TooManyAttempts(
                f"Too many login attempts. Try again in {LOGIN_LOCKOUT_MINUTES} minutes."
            )

    @staticmethod
    def _record_failed_attempt(email: str) -> None:
        _login_attempts[email].append(datetime.now(timezone.utc))

    @staticmethod
    def _clear_attempts(email: str) -> None:
        _login_attempts.pop(email, None)

    @staticmethod
    async def authenticate_user(email: str, password: str, db: AsyncSession) -> Optional[User]:
        """Return the user on success, None on any credential failure.

        Unknown email, wrong password and inactive account are deliberately
        indistinguishable to the caller, including in bcrypt cost.
        """
        email = normalise_email(email)
        AuthService._check_brute_force(email)

        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if user is None:
            AuthService.verify_password(password, _DUMMY_HASH)
            AuthService._record_failed_attempt(email)
            return None

        if not AuthService.verify_password(password, user.password_hash):
            AuthService._record_failed_attempt(email)
            return None

        if user.status != UserStatus.ACTIVE:
            AuthService._record_failed_attempt(email)
            return None

        AuthService._clear_attempts(email)

        user.last_login_at = datetime.now(timezone.utc)
        add_audit(db, AuditEventType.USER_LOGIN, user.id, user.firm_id, "user", user.id)
        await db.commit()
        return user

    @staticmethod
    async def build_caller(user: User, db: AsyncSession) -> CallerContext:
        client_id = None
        if user.role == UserRole.CLIENT:
            result = await db.execute(select(Client.id).where(Client.primary_user_id == user.id))
            client_id = result.scalar_one_or_none()
        return CallerContext(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            firm_id=user.firm_id,
            client_id=client_id,
            **{flag: bool(getattr(user, flag)) for flag in CAPABILITY_FLAGS},
        )

    @staticmethod
    async def user_projection(user: User, db: AsyncSession) -> Dict[str, Any]:
        """The user shape returned by login and /auth/me"""
        caller = await AuthService.build_caller(user, db)
        firm_name = None
        if user.firm_id:
            result = await db.execute(select(Firm.name).where(Firm.id == user.firm_id))
            firm_name = result.scalar_one_or_none()
        return {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "role": user.role.value,
            "firmId": user.firm_id,
            "clientId": caller.client_id,
            "firmName": firm_name,
            "canViewClients": caller.can_view_clients,
            "canEditClients": caller.can_edit_clients,
            "canAccessDocuments": caller.can_access_documents,
            "canAccessTasks": caller.can_access_tasks,
            "canAccessCalendar": caller.can_access_calendar,
            "canAccessChat": caller.can_access_chat,
        }


def normalise_email(email: str) -> str:
    return email.strip().lower()


def validate_new_password(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


# Hash compared against when the email is unknown
_DUMMY_HASH = AuthService.hash_password(secrets.token_urlsafe(16))


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CallerContext:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthorized("Not authenticated")

    payload = AuthService.verify_token(credentials.credentials, "access")

    result = await db.execute(select(User).where(User.id == payload["sub"]))
    user = result.scalar_one_or_none()

    if not user or user.status != UserStatus.ACTIVE:
        raise Unauthorized("User not found or inactive")

    return await AuthService.build_caller(user, db)


def require_role(*roles: UserRole):
    """Dependency factory: require user to have one of the specified roles"""
    async def _check(caller: CallerContext = Depends(get_current_user)) -> CallerContext:
        if caller.role not in roles:
            raise Forbidden("Forbidden")
        return caller
    return _check


def require_firm(*roles: UserRole):
    """Dependency factory: optional role allow-list, then a firm must be present"""
    async def _check(caller: CallerContext = Depends(get_current_user)) -> CallerContext:
        if roles and caller.role not in roles:
            raise Forbidden("Forbidden")
        if not caller.firm_id:
            raise ValidationError("Firm context required")
        return caller
    return _check


def require_capability(flag: str, *roles: UserRole):
    """Dependency factory: firm gate plus a capability flag (authoritative for CA_STAFF)"""
    firm_gate = require_firm(*roles)

    async def _check(caller: CallerContext = Depends(firm_gate)) -> CallerContext:
        if not caller.has_capability(flag):
            raise Forbidden(f"Missing required capability: {flag}")
        return caller
    return _check
