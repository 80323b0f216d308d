"""Payment initiation, background gateway dispatch and status polling."""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.logging import get_logger
from core.subscription_constants import TransactionStatus, parse_transaction_status
from database import SessionFactory
from models.payments import PaymentTransaction
from services.errors import ExternalGatewayError, NotFoundError, PersistenceError, ValidationError
from services.package_catalog import find_package
from services.payments import transaction_store
from services.payments.payment_metrics import record_dispatch_result, record_initiated
from services.payments.zenopay import ZenoPayClient, get_zenopay_client
from services.user_service import get_user_by_installation_id, normalize_installation_id, normalize_phone, serialize_user

logger = get_logger(__name__)

ClientFactory = Callable[[], ZenoPayClient]


def _require_text(value: Optional[str], field: str) -> str:
    normalized = (value or "").strip()
    if not normalized:
        raise ValidationError("payments.field_required", f"{field} is required.")
    return normalized


def initiate_payment(
    session: Session,
    *,
    name: Optional[str],
    phone_number: Optional[str],
    package_name: Optional[str],
    installation_id: Optional[str],
) -> PaymentTransaction:
    """Validate the request and persist a PENDING transaction.

    The amount is read from the catalog now; later price edits do not change
    what this order charges. The gateway call itself is dispatched separately.
    """

    customer_name = _require_text(name, "name")
    phone = normalize_phone(_require_text(phone_number, "phoneNumber"))
    requested_package = _require_text(package_name, "package")
    installation = normalize_installation_id(installation_id)

    package = find_package(session, requested_package, active_only=True)
    if package is None:
        raise NotFoundError("payments.package_not_found", f"Package '{requested_package}' is not available.")

    order_id = transaction_store.generate_order_id()
    try:
        record = transaction_store.create_pending(
            session,
            order_id=order_id,
            installation_id=installation,
            package_name=package.name,
            amount=package.price,
            customer_name=customer_name,
            phone_number=phone,
            currency=package.currency,
        )
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Failed to persist pending transaction %s: %s", order_id, exc)
        raise PersistenceError("payments.persist_failed", "Failed to create payment.") from exc

    record_initiated(package.name)
    logger.info(
        "Payment initiated orderId=%s installation=%s package=%s amount=%s",
        order_id,
        installation,
        package.name,
        package.price,
    )
    return record


def mark_gateway_failure(session: Session, order_id: str, reason: str) -> bool:
    """Move a still-PENDING transaction to FAILED after a gateway error."""
    try:
        changed = transaction_store.transition_from_pending(
            session, order_id, TransactionStatus.FAILED, values={"failure_reason": reason[:500]}
        )
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise PersistenceError("payments.status_persist_failed", "Failed to record gateway failure.") from exc
    return changed


async def dispatch_gateway_payment(
    order_id: str,
    session_factory: SessionFactory,
    client_factory: Optional[ClientFactory] = None,
) -> str:
    """Send the payment request for ``order_id`` to the gateway.

    Runs after the initiation response has been returned, so it opens its own
    session. Returns the dispatch result label also used for metrics.
    """

    session = session_factory()
    started = time.perf_counter()
    result = "error"
    try:
        record = transaction_store.get_transaction(session, order_id)
        if record is None:
            logger.error("Gateway dispatch skipped: order %s not found.", order_id)
            result = "missing_order"
            return result
        if parse_transaction_status(record.status) is not TransactionStatus.PENDING:
            logger.info("Gateway dispatch skipped: order %s already %s.", order_id, record.status)
            result = "skipped"
            return result

        try:
            client = (client_factory or get_zenopay_client)()
            response = await client.create_payment(
                order_id=record.order_id,
                buyer_name=record.customer_name,
                buyer_phone=record.phone_number,
                amount=record.amount,
            )
        except ExternalGatewayError as exc:
            result = "timeout" if exc.code == "payments.gateway_timeout" else "failed"
            logger.warning("Gateway dispatch failed for order %s: %s (%s)", order_id, exc.message, exc.code)
            if mark_gateway_failure(session, order_id, exc.message):
                logger.info("Order %s marked FAILED after gateway error.", order_id)
            return result

        reference = response.get("reference") or response.get("transid")
        if reference:
            try:
                transaction_store.set_gateway_reference(session, order_id, str(reference))
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                logger.warning("Could not store gateway reference for order %s: %s", order_id, exc)
        result = "sent"
        logger.info("Gateway accepted payment request for order %s.", order_id)
        return result
    finally:
        record_dispatch_result(result, time.perf_counter() - started)
        session.close()


def get_payment_status(session: Session, order_id: Optional[str], *, now=None) -> Dict[str, Any]:
    """Polling view of a transaction; token and user only once COMPLETED."""

    normalized = (order_id or "").strip()
    if not normalized:
        raise ValidationError("payments.order_id_required", "orderId is required.")
    record = transaction_store.get_transaction(session, normalized)
    if record is None:
        raise NotFoundError("payments.order_not_found", "Payment not found.")

    payload: Dict[str, Any] = {"orderId": record.order_id, "status": record.status}
    if record.status != TransactionStatus.COMPLETED.value:
        if record.failure_reason:
            payload["reason"] = record.failure_reason
        return payload

    payload["token"] = record.access_token
    user = get_user_by_installation_id(session, record.installation_id)
    payload["user"] = serialize_user(user, now=now) if user is not None else None
    return payload


__all__ = [
    "dispatch_gateway_payment",
    "get_payment_status",
    "initiate_payment",
    "mark_gateway_failure",
]
