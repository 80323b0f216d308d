"""Administrator login and bootstrap helpers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError
from sqlalchemy import or_
from sqlalchemy.orm import Session

from core.env import env_int, env_str
from core.logging import get_logger
from models.admin import AdminUser
from services.auth_tokens import create_admin_token
from services.errors import ServiceError, ValidationError

logger = get_logger(__name__)

_PASSWORD_HASHER = PasswordHasher(
    time_cost=env_int("ADMIN_ARGON2_TIME_COST", 3, minimum=1),
    memory_cost=env_int("ADMIN_ARGON2_MEMORY_COST", 65536, minimum=8192),
    parallelism=env_int("ADMIN_ARGON2_PARALLELISM", 1, minimum=1),
)


class AdminAuthError(ServiceError):
    http_status = 401


@dataclass(frozen=True)
class AdminLoginResult:
    admin: AdminUser
    token: str
    expires_in: int


def hash_password(password: str) -> str:
    if not password or len(password) < 8:
        raise ValidationError("admin.password_too_short", "Admin password must be at least 8 characters.")
    return _PASSWORD_HASHER.hash(password)


def authenticate_admin(session: Session, *, username: Optional[str], password: Optional[str]) -> AdminLoginResult:
    """Verify credentials (username or email) and issue an admin token."""

    identifier = (username or "").strip()
    if not identifier or not password:
        raise ValidationError("admin.credentials_required", "Username and password are required.")

    logger.info("Admin login attempt for '%s'.", identifier)
    admin = (
        session.query(AdminUser)
        .filter(or_(AdminUser.username == identifier, AdminUser.email == identifier))
        .filter(AdminUser.is_active.is_(True))
        .first()
    )
    if admin is None:
        logger.info("Admin login failed: no active admin for '%s'.", identifier)
        raise AdminAuthError("admin.invalid_credentials", "Invalid credentials.")

    try:
        _PASSWORD_HASHER.verify(admin.password_hash, password)
    except (VerifyMismatchError, InvalidHashError):
        logger.info("Admin login failed: password mismatch for '%s'.", identifier)
        raise AdminAuthError("admin.invalid_credentials", "Invalid credentials.")

    admin.last_login_at = datetime.now(timezone.utc)
    session.commit()
    token, expires_in = create_admin_token(admin_id=str(admin.id), username=admin.username, role=admin.role)
    logger.info("Admin '%s' logged in.", admin.username)
    return AdminLoginResult(admin=admin, token=token, expires_in=expires_in)


def ensure_bootstrap_admin(session: Session) -> Optional[AdminUser]:
    """Create the first admin from ``BOOTSTRAP_ADMIN_*`` env vars when none exists."""

    username = (env_str("BOOTSTRAP_ADMIN_USERNAME") or "").strip()
    password = env_str("BOOTSTRAP_ADMIN_PASSWORD") or ""
    if not username or not password:
        return None
    if session.query(AdminUser).filter(AdminUser.username == username).first() is not None:
        return None
    email = (env_str("BOOTSTRAP_ADMIN_EMAIL") or f"{username}@localhost").strip()
    admin = AdminUser(username=username, email=email, password_hash=hash_password(password), role="super_admin")
    session.add(admin)
    session.commit()
    logger.info("Bootstrap admin '%s' created.", username)
    return admin


def serialize_admin(admin: AdminUser) -> dict:
    return {
        "id": str(admin.id),
        "username": admin.username,
        "email": admin.email,
        "role": admin.role,
        "isActive": bool(admin.is_active),
        "lastLogin": admin.last_login_at.isoformat() if admin.last_login_at else None,
    }


__all__ = [
    "AdminAuthError",
    "AdminLoginResult",
    "authenticate_admin",
    "ensure_bootstrap_admin",
    "hash_password",
    "serialize_admin",
]
