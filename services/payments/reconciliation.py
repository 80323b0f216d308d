"""Turn payment gateway notifications into durable subscription state.

Commit order for a COMPLETED notification:

1. transaction row PENDING -> COMPLETED together with the issued token and
   the granted duration (conditional on the row still being PENDING);
2. grant claim (``grant_applied_at IS NULL -> now``) plus the user-side
   expiry extension, committed together.

A crash between the two commits leaves a COMPLETED transaction whose grant
is not applied. A redelivered webhook or ``resume_pending_grants`` finishes
it; the claim in step 2 makes the extension happen at most once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.logging import get_logger
from core.subscription_constants import (
    DEFAULT_VALIDITY_DAYS,
    TERMINAL_STATUSES,
    TransactionStatus,
    parse_transaction_status,
)
from models.payments import PaymentTransaction
from models.user import User, ensure_utc
from services.auth_tokens import create_access_token
from services.errors import PersistenceError, ValidationError
from services.package_catalog import find_package
from services.payments import transaction_store
from services.user_service import get_user_by_installation_id, normalize_phone, phone_claimed_by_other

logger = get_logger(__name__)

OUTCOME_IGNORED_UNKNOWN_ORDER = "ignored_unknown_order"
OUTCOME_STATUS_RECORDED = "status_recorded"
OUTCOME_COMPLETED = "completed"
OUTCOME_GRANT_RESUMED = "grant_resumed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_TERMINAL_CONFLICT = "terminal_conflict"


@dataclass
class ReconciliationResult:
    outcome: str
    order_id: str
    status: Optional[TransactionStatus] = None
    transaction: Optional[PaymentTransaction] = None
    user: Optional[User] = None
    token: Optional[str] = None
    granted_days: Optional[int] = None
    expires_at: Optional[datetime] = None

    @property
    def changed_state(self) -> bool:
        return self.outcome in {OUTCOME_STATUS_RECORDED, OUTCOME_COMPLETED, OUTCOME_GRANT_RESUMED}


@dataclass
class RecoverySummary:
    resumed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def _utc_now(now: Optional[datetime]) -> datetime:
    return ensure_utc(now) or datetime.now(timezone.utc)


def resolve_validity_days(session: Session, package_name: Optional[str]) -> int:
    """Package validity in days, or ``DEFAULT_VALIDITY_DAYS`` when the name does not resolve."""
    package = find_package(session, package_name)
    if package is None or not package.validity_days or package.validity_days <= 0:
        logger.warning(
            "Package '%s' not found in catalog; granting default %d days.",
            package_name,
            DEFAULT_VALIDITY_DAYS,
        )
        return DEFAULT_VALIDITY_DAYS
    return int(package.validity_days)


def reconcile_payment(
    session: Session,
    order_id: Optional[str],
    payment_status: Union[str, TransactionStatus, None],
    *,
    now: Optional[datetime] = None,
    gateway_reference: Optional[str] = None,
    source: str = "webhook",
) -> ReconciliationResult:
    normalized_order_id = order_id.strip() if isinstance(order_id, str) else ""
    if not normalized_order_id:
        raise ValidationError("payments.order_id_required", "order_id is required.")
    status = payment_status if isinstance(payment_status, TransactionStatus) else parse_transaction_status(payment_status)
    if status is None or status is TransactionStatus.PENDING:
        raise ValidationError("payments.status_invalid", f"Unsupported payment_status: {payment_status!r}.")

    moment = _utc_now(now)
    try:
        record = transaction_store.get_transaction(session, normalized_order_id)
    except SQLAlchemyError as exc:
        raise PersistenceError("payments.lookup_failed", "Failed to load transaction.") from exc

    if record is None:
        logger.info("Payment %s notification for unknown order %s ignored.", source, normalized_order_id)
        return ReconciliationResult(outcome=OUTCOME_IGNORED_UNKNOWN_ORDER, order_id=normalized_order_id, status=status)

    logger.info(
        "Reconciling order %s: reported=%s current=%s source=%s",
        record.order_id,
        status.value,
        record.status,
        source,
    )
    current = parse_transaction_status(record.status)
    if current is None or current in TERMINAL_STATUSES:
        return _handle_terminal(session, record, current, status, moment)
    if status is not TransactionStatus.COMPLETED:
        return _record_unsuccessful(session, record, status, moment, gateway_reference)
    return _complete(session, record, moment, gateway_reference)


def _record_unsuccessful(
    session: Session,
    record: PaymentTransaction,
    status: TransactionStatus,
    moment: datetime,
    gateway_reference: Optional[str],
) -> ReconciliationResult:
    values = {"failure_reason": f"Gateway reported {status.value}."}
    if gateway_reference:
        values["gateway_reference"] = gateway_reference
    try:
        changed = transaction_store.transition_from_pending(session, record.order_id, status, values=values)
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Failed to record %s for order %s: %s", status.value, record.order_id, exc)
        raise PersistenceError("payments.status_persist_failed", "Failed to update transaction status.") from exc

    session.refresh(record)
    if not changed:
        return _handle_terminal(session, record, parse_transaction_status(record.status), status, moment)
    logger.info("Order %s marked %s; no user changes.", record.order_id, status.value)
    return ReconciliationResult(
        outcome=OUTCOME_STATUS_RECORDED,
        order_id=record.order_id,
        status=status,
        transaction=record,
    )


def _complete(
    session: Session,
    record: PaymentTransaction,
    moment: datetime,
    gateway_reference: Optional[str],
) -> ReconciliationResult:
    days = resolve_validity_days(session, record.package_name)
    token, _ = create_access_token(
        installation_id=record.installation_id,
        expires_in=timedelta(days=days),
        order_id=record.order_id,
        now=moment,
    )
    values = {
        "access_token": token,
        "granted_days": days,
        "completed_at": moment,
        "failure_reason": None,
    }
    if gateway_reference:
        values["gateway_reference"] = gateway_reference

    try:
        changed = transaction_store.transition_from_pending(
            session, record.order_id, TransactionStatus.COMPLETED, values=values
        )
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Failed to complete order %s: %s", record.order_id, exc)
        raise PersistenceError("payments.status_persist_failed", "Failed to update transaction status.") from exc

    session.refresh(record)
    if not changed:
        # Another delivery completed (or failed) the order first.
        return _handle_terminal(
            session, record, parse_transaction_status(record.status), TransactionStatus.COMPLETED, moment
        )

    user, expires_at = _apply_grant(session, record, moment)
    if user is None:
        return _duplicate_result(session, record)
    logger.info(
        "Order %s completed: installation=%s +%d days, expires %s.",
        record.order_id,
        record.installation_id,
        days,
        expires_at.isoformat() if expires_at else None,
    )
    return ReconciliationResult(
        outcome=OUTCOME_COMPLETED,
        order_id=record.order_id,
        status=TransactionStatus.COMPLETED,
        transaction=record,
        user=user,
        token=token,
        granted_days=days,
        expires_at=expires_at,
    )


def _handle_terminal(
    session: Session,
    record: PaymentTransaction,
    current: Optional[TransactionStatus],
    reported: TransactionStatus,
    moment: datetime,
) -> ReconciliationResult:
    if current is TransactionStatus.COMPLETED and reported is TransactionStatus.COMPLETED:
        if record.grant_applied_at is None:
            user, expires_at = _apply_grant(session, record, moment)
            if user is not None:
                logger.info("Resumed unapplied grant for order %s.", record.order_id)
                return ReconciliationResult(
                    outcome=OUTCOME_GRANT_RESUMED,
                    order_id=record.order_id,
                    status=current,
                    transaction=record,
                    user=user,
                    token=record.access_token,
                    granted_days=record.granted_days,
                    expires_at=expires_at,
                )
        return _duplicate_result(session, record)

    if current is reported:
        logger.info("Duplicate %s notification for order %s ignored.", reported.value, record.order_id)
        return ReconciliationResult(
            outcome=OUTCOME_DUPLICATE, order_id=record.order_id, status=current, transaction=record
        )

    logger.warning(
        "Order %s is already %s; ignoring %s notification.",
        record.order_id,
        current.value if current else record.status,
        reported.value,
    )
    return ReconciliationResult(
        outcome=OUTCOME_TERMINAL_CONFLICT, order_id=record.order_id, status=current, transaction=record
    )


def _duplicate_result(session: Session, record: PaymentTransaction) -> ReconciliationResult:
    user = get_user_by_installation_id(session, record.installation_id)
    return ReconciliationResult(
        outcome=OUTCOME_DUPLICATE,
        order_id=record.order_id,
        status=TransactionStatus.COMPLETED,
        transaction=record,
        user=user,
        token=record.access_token,
        granted_days=record.granted_days,
        expires_at=user.expiry_utc() if user else None,
    )


def _apply_grant(
    session: Session, record: PaymentTransaction, moment: datetime
) -> Tuple[Optional[User], Optional[datetime]]:
    """Extend (or create) the installation's user; ``(None, None)`` when the grant was already claimed."""

    days = record.granted_days or resolve_validity_days(session, record.package_name)
    duration = timedelta(days=days)
    installation_id = record.installation_id
    phone = normalize_phone(record.phone_number)

    try:
        if not transaction_store.claim_grant(session, record.order_id, applied_at=moment):
            session.rollback()
            return None, None

        # Linked strictly by installation id: never by phone number or device id.
        user = get_user_by_installation_id(session, installation_id)
        if user is not None:
            current_expiry = user.expiry_utc()
            base = current_expiry if current_expiry is not None and current_expiry > moment else moment
            user.subscription_expires_at = base + duration
            if phone and not user.phone_number:
                if phone_claimed_by_other(session, phone, installation_id=installation_id):
                    logger.info(
                        "Phone from order %s belongs to another user; not adopting it for %s.",
                        record.order_id,
                        installation_id,
                    )
                else:
                    user.phone_number = phone
        else:
            if phone and phone_claimed_by_other(session, phone, installation_id=installation_id):
                logger.info(
                    "Phone from order %s belongs to another user; creating %s without it.",
                    record.order_id,
                    installation_id,
                )
                phone = None
            user = User(
                installation_id=installation_id,
                display_name=record.customer_name,
                phone_number=phone,
                subscription_expires_at=moment + duration,
            )
            session.add(user)
            logger.info("Created user for installation %s from order %s.", installation_id, record.order_id)
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Failed to apply grant for order %s: %s", record.order_id, exc)
        raise PersistenceError("payments.grant_persist_failed", "Failed to update subscription.") from exc

    session.refresh(user)
    session.refresh(record)
    return user, user.expiry_utc()


def resume_pending_grants(session: Session, *, now: Optional[datetime] = None, limit: int = 100) -> RecoverySummary:
    """Apply grants for COMPLETED transactions whose user update never landed."""

    moment = _utc_now(now)
    summary = RecoverySummary()
    for record in transaction_store.list_unapplied_grants(session, limit=limit):
        try:
            user, _ = _apply_grant(session, record, moment)
        except PersistenceError:
            logger.exception("Grant recovery failed for order %s.", record.order_id)
            summary.failed.append(record.order_id)
            continue
        if user is None:
            summary.skipped.append(record.order_id)
        else:
            summary.resumed.append(record.order_id)
    if summary.resumed or summary.failed:
        logger.info(
            "Grant recovery finished: resumed=%d skipped=%d failed=%d",
            len(summary.resumed),
            len(summary.skipped),
            len(summary.failed),
        )
    return summary


def expire_stale_transactions(
    session: Session,
    *,
    older_than: timedelta,
    now: Optional[datetime] = None,
    limit: int = 500,
) -> List[str]:
    """Move PENDING transactions created before ``now - older_than`` to EXPIRED."""

    moment = _utc_now(now)
    cutoff = moment - older_than
    expired: List[str] = []
    try:
        for record in transaction_store.list_stale_pending(session, created_before=cutoff, limit=limit):
            if transaction_store.transition_from_pending(
                session,
                record.order_id,
                TransactionStatus.EXPIRED,
                values={"failure_reason": "No gateway notification before cutoff."},
            ):
                expired.append(record.order_id)
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise PersistenceError("payments.expire_failed", "Failed to expire stale transactions.") from exc
    if expired:
        logger.info("Expired %d stale pending transactions.", len(expired))
    return expired


__all__ = [
    "OUTCOME_COMPLETED",
    "OUTCOME_DUPLICATE",
    "OUTCOME_GRANT_RESUMED",
    "OUTCOME_IGNORED_UNKNOWN_ORDER",
    "OUTCOME_STATUS_RECORDED",
    "OUTCOME_TERMINAL_CONFLICT",
    "ReconciliationResult",
    "RecoverySummary",
    "expire_stale_transactions",
    "reconcile_payment",
    "resolve_validity_days",
    "resume_pending_grants",
]
