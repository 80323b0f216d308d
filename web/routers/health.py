"""Health-related API endpoints."""

from __future__ import annotations

from typing import Optional, Tuple

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import get_db
from schemas.api.public import HealthResponse

router = APIRouter(prefix="/health", tags=["Health"])


def ping_database(db: Session) -> Tuple[bool, Optional[str]]:
    """Return database connectivity status and optional error message."""
    try:
        db.execute(text("SELECT 1"))
        return True, None
    except SQLAlchemyError as exc:
        return False, str(exc)


@router.get(
    "",
    response_model=HealthResponse,
    summary="Service runtime status",
    description="Liveness and database connectivity used by container probes.",
)
def read_service_status(db: Session = Depends(get_db)) -> HealthResponse:
    db_ok, db_error = ping_database(db)
    return HealthResponse(status="ok" if db_ok else "degraded", database="ok" if db_ok else db_error)


__all__ = ["router", "ping_database"]
