"""User ledger access helpers (installation-keyed accounts)."""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.logging import get_logger
from models.user import User
from services.errors import NotFoundError, PersistenceError, ValidationError

logger = get_logger(__name__)

_PHONE_STRIP = re.compile(r"[\s\-().]")
_MAX_INSTALLATION_ID = 128


def normalize_installation_id(value: Optional[str]) -> str:
    normalized = (value or "").strip()
    if not normalized:
        raise ValidationError("auth.installation_id_required", "installationId is required.")
    if len(normalized) > _MAX_INSTALLATION_ID:
        raise ValidationError("auth.installation_id_invalid", "installationId is too long.")
    return normalized


def normalize_phone(value: Optional[str]) -> Optional[str]:
    """Strip formatting characters; empty input becomes ``None``."""
    if value is None:
        return None
    normalized = _PHONE_STRIP.sub("", str(value))
    return normalized or None


def get_user_by_installation_id(session: Session, installation_id: str) -> Optional[User]:
    return session.query(User).filter(User.installation_id == installation_id).first()


def get_user_by_phone(session: Session, phone_number: str) -> Optional[User]:
    return session.query(User).filter(User.phone_number == phone_number).first()


def phone_claimed_by_other(session: Session, phone_number: Optional[str], *, installation_id: str) -> bool:
    """True when ``phone_number`` already belongs to a user with a different installation."""
    if not phone_number:
        return False
    owner = get_user_by_phone(session, phone_number)
    return owner is not None and owner.installation_id != installation_id


def device_login(
    session: Session,
    *,
    installation_id: str,
    device_id: Optional[str] = None,
    display_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> User:
    """Find or create the user for an installation and stamp ``last_login_at``."""

    installation_id = normalize_installation_id(installation_id)
    seen_at = now or datetime.now(timezone.utc)
    user = get_user_by_installation_id(session, installation_id)
    if user is None:
        user = User(installation_id=installation_id, display_name=display_name, device_id=device_id)
        session.add(user)
        logger.info("Created user for new installation %s.", installation_id)
    else:
        if device_id:
            user.device_id = device_id
        if display_name and not user.display_name:
            user.display_name = display_name
    user.last_login_at = seen_at
    try:
        session.commit()
    except IntegrityError:
        # A concurrent login created the row first.
        session.rollback()
        user = get_user_by_installation_id(session, installation_id)
        if user is None:
            raise PersistenceError("users.persist_failed", "Failed to save user.")
        user.last_login_at = seen_at
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise PersistenceError("users.persist_failed", "Failed to save user.") from exc
    session.refresh(user)
    return user


def list_users(session: Session, *, limit: int = 200) -> List[User]:
    return session.query(User).order_by(User.created_at.desc()).limit(limit).all()


def delete_user(session: Session, user_id: str) -> None:
    try:
        parsed = uuid.UUID(str(user_id))
    except (TypeError, ValueError) as exc:
        raise ValidationError("users.id_invalid", "User id is not a valid UUID.") from exc
    user = session.get(User, parsed)
    if user is None:
        raise NotFoundError("users.not_found", "User not found.")
    session.delete(user)
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise PersistenceError("users.delete_failed", "Failed to delete user.") from exc
    logger.info("Deleted user %s (installation=%s).", user_id, user.installation_id)


def serialize_user(user: User, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    reference = now or datetime.now(timezone.utc)
    expiry = user.expiry_utc()
    return {
        "id": str(user.id),
        "installationId": user.installation_id,
        "name": user.display_name,
        "phoneNumber": user.phone_number,
        "isPremium": user.is_premium_at(reference),
        "premiumExpiryDate": expiry.isoformat() if expiry else None,
        "lastLogin": user.last_login_at.isoformat() if user.last_login_at else None,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


__all__ = [
    "delete_user",
    "device_login",
    "get_user_by_installation_id",
    "get_user_by_phone",
    "list_users",
    "normalize_installation_id",
    "normalize_phone",
    "phone_claimed_by_other",
    "serialize_user",
]
