"""Payment transaction ledger used for initiation, webhook reconciliation and polling.

Status changes go through conditional updates (``WHERE status = 'PENDING'``)
so concurrent or repeated deliveries cannot move a row out of a terminal
state. Helpers that change rows only flush; callers own the commit.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.logging import get_logger
from core.subscription_constants import DEFAULT_CURRENCY, ORDER_ID_PREFIX, TransactionStatus
from models.payments import PaymentTransaction

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def generate_order_id() -> str:
    return f"{ORDER_ID_PREFIX}-{uuid.uuid4().hex[:16]}"


def create_pending(
    session: Session,
    *,
    order_id: str,
    installation_id: str,
    package_name: str,
    amount: int,
    customer_name: Optional[str] = None,
    phone_number: Optional[str] = None,
    currency: str = DEFAULT_CURRENCY,
) -> PaymentTransaction:
    """Insert a PENDING transaction and commit it."""
    if not order_id:
        raise ValueError("order_id is required.")

    record = PaymentTransaction(
        order_id=order_id,
        installation_id=installation_id,
        customer_name=customer_name,
        phone_number=phone_number,
        package_name=package_name,
        amount=int(amount),
        currency=currency or DEFAULT_CURRENCY,
        status=TransactionStatus.PENDING.value,
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    return record


def get_transaction(session: Session, order_id: str) -> Optional[PaymentTransaction]:
    if not order_id:
        return None
    return session.get(PaymentTransaction, order_id)


def transition_from_pending(
    session: Session,
    order_id: str,
    status: TransactionStatus,
    *,
    values: Optional[Mapping[str, Any]] = None,
) -> bool:
    """Move a PENDING row to ``status``; False when the row was not PENDING (or is missing)."""
    if status is TransactionStatus.PENDING:
        raise ValueError("Cannot transition a transaction back to PENDING.")
    changes: Dict[str, Any] = dict(values or {})
    changes["status"] = status.value
    changes["updated_at"] = _now()
    updated = (
        session.query(PaymentTransaction)
        .filter(
            PaymentTransaction.order_id == order_id,
            PaymentTransaction.status == TransactionStatus.PENDING.value,
        )
        .update(changes, synchronize_session="fetch")
    )
    return updated == 1


def claim_grant(session: Session, order_id: str, *, applied_at: datetime) -> bool:
    """Mark the user grant of a COMPLETED row as applied; False if already claimed."""
    updated = (
        session.query(PaymentTransaction)
        .filter(
            PaymentTransaction.order_id == order_id,
            PaymentTransaction.status == TransactionStatus.COMPLETED.value,
            PaymentTransaction.grant_applied_at.is_(None),
        )
        .update({"grant_applied_at": applied_at, "updated_at": _now()}, synchronize_session="fetch")
    )
    return updated == 1


def set_gateway_reference(session: Session, order_id: str, reference: Optional[str]) -> None:
    if not reference:
        return
    session.query(PaymentTransaction).filter(
        PaymentTransaction.order_id == order_id,
        PaymentTransaction.gateway_reference.is_(None),
    ).update({"gateway_reference": reference}, synchronize_session="fetch")


def list_transactions(
    session: Session,
    *,
    limit: int = 100,
    status: Optional[TransactionStatus] = None,
) -> List[PaymentTransaction]:
    query = session.query(PaymentTransaction)
    if status is not None:
        query = query.filter(PaymentTransaction.status == status.value)
    return query.order_by(PaymentTransaction.created_at.desc()).limit(limit).all()


def list_unapplied_grants(session: Session, *, limit: int = 100) -> List[PaymentTransaction]:
    """COMPLETED rows whose user-side extension was never written."""
    return (
        session.query(PaymentTransaction)
        .filter(
            PaymentTransaction.status == TransactionStatus.COMPLETED.value,
            PaymentTransaction.grant_applied_at.is_(None),
        )
        .order_by(PaymentTransaction.completed_at.asc())
        .limit(limit)
        .all()
    )


def list_stale_pending(session: Session, *, created_before: datetime, limit: int = 500) -> List[PaymentTransaction]:
    return (
        session.query(PaymentTransaction)
        .filter(
            PaymentTransaction.status == TransactionStatus.PENDING.value,
            PaymentTransaction.created_at < created_before,
        )
        .order_by(PaymentTransaction.created_at.asc())
        .limit(limit)
        .all()
    )


def count_by_status(session: Session) -> Dict[str, int]:
    rows = (
        session.query(PaymentTransaction.status, func.count(PaymentTransaction.order_id))
        .group_by(PaymentTransaction.status)
        .all()
    )
    counts = {status.value: 0 for status in TransactionStatus}
    for status_value, total in rows:
        counts[str(status_value)] = int(total)
    return counts


def serialize_transaction(record: PaymentTransaction) -> Dict[str, Any]:
    return {
        "orderId": record.order_id,
        "installationId": record.installation_id,
        "customerName": record.customer_name,
        "phoneNumber": record.phone_number,
        "package": record.package_name,
        "amount": record.amount,
        "currency": record.currency,
        "status": record.status,
        "gatewayReference": record.gateway_reference,
        "failureReason": record.failure_reason,
        "grantedDays": record.granted_days,
        "grantApplied": record.grant_applied_at is not None,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
        "completedAt": record.completed_at.isoformat() if record.completed_at else None,
    }


__all__ = [
    "claim_grant",
    "count_by_status",
    "create_pending",
    "generate_order_id",
    "get_transaction",
    "list_stale_pending",
    "list_transactions",
    "list_unapplied_grants",
    "serialize_transaction",
    "set_gateway_reference",
    "transition_from_pending",
]
