"""Shared FastAPI dependencies."""

from __future__ import annotations

from typing import NoReturn, Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from database import get_db
from models.user import User
from services.auth_tokens import AuthTokenError, decode_token
from services.errors import ServiceError
from services.settings_cache import SettingsCache
from services.user_service import get_user_by_installation_id


def raise_service_error(exc: ServiceError) -> NoReturn:
    """Translate a service-layer error into the structured HTTP error body."""
    raise HTTPException(status_code=exc.http_status, detail=exc.to_detail()) from exc


def get_settings_cache(request: Request) -> SettingsCache:
    cache = getattr(request.app.state, "settings_cache", None)
    if cache is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "settings.unavailable", "message": "Settings cache is not initialised."},
        )
    return cache


def extract_bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        candidate = auth_header[7:].strip()
        if candidate:
            return candidate
    return None


def get_current_installation(request: Request) -> str:
    """Installation id carried by a valid app access token."""
    token = extract_bearer_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "auth.required", "message": "Authentication required."},
        )
    try:
        claims = decode_token(token, scope="access")
    except AuthTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": exc.code, "message": str(exc)},
        ) from exc
    return str(claims["sub"])


def get_current_user(
    installation_id: str = Depends(get_current_installation),
    db: Session = Depends(get_db),
) -> User:
    user = get_user_by_installation_id(db, installation_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "auth.user_not_found", "message": "No user for this installation."},
        )
    return user


__all__ = [
    "extract_bearer_token",
    "get_current_installation",
    "get_current_user",
    "get_settings_cache",
    "raise_service_error",
]
