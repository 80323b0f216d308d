"""Access token issuing and verification for app installations and admins."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Literal, Optional, Tuple

import jwt

from core.env import env_int, env_str

TokenScope = Literal["access", "admin"]


class AuthTokenError(RuntimeError):
    """Raised when a token cannot be issued or verified."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


def _jwt_secret() -> str:
    secret = env_str("APP_JWT_SECRET") or env_str("JWT_SECRET")
    if not secret:
        raise RuntimeError("APP_JWT_SECRET (or JWT_SECRET) must be set.")
    return secret


def _jwt_alg() -> str:
    return env_str("APP_JWT_ALG") or "HS256"


def _jwt_issuer() -> str:
    return env_str("APP_JWT_ISSUER") or "tvmax-api"


def _jwt_audience() -> str:
    return env_str("APP_JWT_AUDIENCE") or "tvmax-app"


def default_access_ttl() -> timedelta:
    return timedelta(days=env_int("APP_ACCESS_TOKEN_TTL_DAYS", 30, minimum=1))


def _encode(payload: Dict[str, Any], *, now: datetime, expires_in: timedelta) -> Tuple[str, int]:
    ttl_seconds = int(expires_in.total_seconds())
    if ttl_seconds <= 0:
        raise AuthTokenError("auth.token_ttl_invalid", "Token lifetime must be positive.")
    claims = {
        **payload,
        "aud": _jwt_audience(),
        "iss": _jwt_issuer(),
        "iat": int(now.timestamp()),
        "exp": int((now + expires_in).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    token = jwt.encode(claims, _jwt_secret(), algorithm=_jwt_alg())
    return token, ttl_seconds


def create_access_token(
    *,
    installation_id: str,
    expires_in: Optional[timedelta] = None,
    user_id: Optional[str] = None,
    order_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[str, int]:
    """Issue an app token bound to an installation identifier.

    Tokens handed out after a payment carry the order id and live exactly as
    long as the purchased subscription.
    """

    if not installation_id:
        raise AuthTokenError("auth.subject_required", "installation_id is required to issue a token.")
    issued_at = now or datetime.now(timezone.utc)
    payload: Dict[str, Any] = {"sub": installation_id, "scope": "access"}
    if user_id:
        payload["uid"] = user_id
    if order_id:
        payload["order_id"] = order_id
    return _encode(payload, now=issued_at, expires_in=expires_in or default_access_ttl())


def create_admin_token(*, admin_id: str, username: str, role: str) -> Tuple[str, int]:
    ttl = timedelta(hours=env_int("ADMIN_TOKEN_TTL_HOURS", 12, minimum=1))
    payload = {"sub": admin_id, "scope": "admin", "username": username, "role": role}
    return _encode(payload, now=datetime.now(timezone.utc), expires_in=ttl)


def decode_token(token: str, *, scope: Optional[TokenScope] = None) -> Dict[str, Any]:
    """Verify signature, issuer, audience and (optionally) scope."""

    try:
        payload = jwt.decode(
            token,
            _jwt_secret(),
            algorithms=[_jwt_alg()],
            audience=_jwt_audience(),
            issuer=_jwt_issuer(),
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthTokenError("auth.token_expired", "Token has expired.") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthTokenError("auth.token_invalid", "Token verification failed.") from exc
    if scope and payload.get("scope") != scope:
        raise AuthTokenError("auth.token_invalid", "Token scope does not match.")
    return payload


__all__ = [
    "AuthTokenError",
    "TokenScope",
    "create_access_token",
    "create_admin_token",
    "decode_token",
    "default_access_ttl",
]
