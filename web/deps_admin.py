"""Admin authentication dependencies."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from core.logging import get_logger
from database import get_db
from models.admin import AdminUser
from services.auth_tokens import AuthTokenError, decode_token
from web.deps import extract_bearer_token

logger = get_logger(__name__)


@dataclass(frozen=True)
class AdminSession:
    """Represents a validated administrator token."""

    admin: AdminUser
    actor: str
    role: str
    token_id: Optional[str] = None


def _forbidden(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail={"code": code, "message": message})


def require_admin(request: Request, db: Session = Depends(get_db)) -> AdminSession:
    token = extract_bearer_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "admin.auth_required", "message": "Admin token is required."},
        )

    try:
        claims = decode_token(token, scope="admin")
    except AuthTokenError as exc:
        logger.warning("Rejected admin token: %s", exc.code)
        raise _forbidden("admin.forbidden", "Admin token is invalid or expired.") from exc

    try:
        admin_id = uuid.UUID(str(claims.get("sub")))
    except (TypeError, ValueError) as exc:
        raise _forbidden("admin.forbidden", "Admin token subject is invalid.") from exc

    admin = db.get(AdminUser, admin_id)
    if admin is None or not admin.is_active:
        logger.warning("Admin token for unknown or inactive admin %s.", admin_id)
        raise _forbidden("admin.forbidden", "Admin account is not active.")

    return AdminSession(
        admin=admin,
        actor=admin.username,
        role=admin.role,
        token_id=claims.get("jti"),
    )


__all__ = ["AdminSession", "require_admin"]
