"""Service-layer error taxonomy shared by the payment, settings and auth flows."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ServiceError(RuntimeError):
    """Base error carrying a stable machine-readable code."""

    http_status = 500

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationError(ServiceError):
    """Missing or malformed input, raised before any store access."""

    http_status = 400


class NotFoundError(ServiceError):
    """Unknown order, user or package."""

    http_status = 404


class ExternalGatewayError(ServiceError):
    """Payment provider unreachable, timed out or returned a non-success response."""

    http_status = 502

    def __init__(
        self,
        code: str,
        message: str,
        *,
        status_code: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(code, message)
        self.status_code = status_code
        self.payload = payload or {}


class PersistenceError(ServiceError):
    """A store write failed; already-committed steps are not rolled back."""

    http_status = 500


__all__ = [
    "ExternalGatewayError",
    "NotFoundError",
    "PersistenceError",
    "ServiceError",
    "ValidationError",
]
