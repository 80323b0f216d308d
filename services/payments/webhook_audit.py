"""Payment webhook audit log persistence and lookup."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.logging import get_logger
from database import SessionFactory
from models.payments import PaymentWebhookEvent

logger = get_logger(__name__)


def append_webhook_audit_entry(
    session_factory: SessionFactory,
    *,
    result: str,
    context: Dict[str, Any],
    payload: Optional[Dict[str, Any]] = None,
    message: Optional[str] = None,
) -> None:
    """Record a webhook outcome in its own session.

    Runs outside the reconciliation session so the entry survives a rolled
    back reconciliation. Audit failures are logged and never fail the webhook.
    """
    try:
        session = session_factory()
    except Exception as exc:  # pragma: no cover - session factory misconfigured
        logger.error("Payment webhook audit session could not be created: %s", exc)
        return

    try:
        retry_raw = context.get("retry_count")
        try:
            retry_count = int(retry_raw) if retry_raw not in (None, "") else None
        except (TypeError, ValueError):
            retry_count = None
        session.add(
            PaymentWebhookEvent(
                order_id=context.get("order_id"),
                status=context.get("status"),
                result=result,
                retry_count=retry_count,
                message=message,
                context=context,
                payload=payload,
            )
        )
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Payment webhook audit write failed: %s", exc)
    finally:
        session.close()


def read_recent_webhook_entries(session: Session, limit: int = 100) -> List[Dict[str, Any]]:
    """Most recent audit entries first."""
    rows = (
        session.query(PaymentWebhookEvent)
        .order_by(PaymentWebhookEvent.created_at.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "loggedAt": row.created_at.isoformat() if row.created_at else None,
            "orderId": row.order_id,
            "status": row.status,
            "result": row.result,
            "message": row.message,
            "context": row.context or {},
            "payload": row.payload,
        }
        for row in rows
    ]


__all__ = ["append_webhook_audit_entry", "read_recent_webhook_entries"]
