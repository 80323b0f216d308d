"""Device login and profile endpoints for app installations."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from models.user import User
from schemas.api.auth import AppUserSchema, DeviceLoginRequest, DeviceLoginResponse
from services.auth_tokens import create_access_token
from services.errors import ServiceError
from services.user_service import device_login, serialize_user
from web.deps import get_current_user, raise_service_error

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/device-login", response_model=DeviceLoginResponse, summary="Find or create the installation's user.")
def login_device(payload: DeviceLoginRequest, db: Session = Depends(get_db)) -> DeviceLoginResponse:
    try:
        user = device_login(
            db,
            installation_id=payload.installationId,
            device_id=payload.deviceId,
            display_name=payload.name,
        )
    except ServiceError as exc:
        raise_service_error(exc)

    token, expires_in = create_access_token(installation_id=user.installation_id, user_id=str(user.id))
    return DeviceLoginResponse(
        user=AppUserSchema(**serialize_user(user)),
        accessToken=token,
        expiresIn=expires_in,
    )


@router.get("/me", response_model=AppUserSchema, summary="Return the user bound to the access token.")
def read_me(user: User = Depends(get_current_user)) -> AppUserSchema:
    return AppUserSchema(**serialize_user(user))


__all__ = ["router"]
