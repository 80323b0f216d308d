"""Payment endpoints: initiation, status polling and the ZenoPay webhook."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from database import SessionFactory, get_db, get_session_factory
from schemas.api.payments import (
    PaymentInitiateRequest,
    PaymentInitiateResponse,
    PaymentStatusResponse,
    PaymentWebhookResponse,
)
from services.errors import PersistenceError, ServiceError, ValidationError
from services.payments import verify_webhook_api_key
from services.payments.payment_metrics import record_webhook_result
from services.payments.payment_service import dispatch_gateway_payment, get_payment_status, initiate_payment
from services.payments.reconciliation import reconcile_payment
from services.payments.webhook_audit import append_webhook_audit_entry
from services.payments.webhook_utils import (
    resolve_gateway_reference,
    resolve_order_id,
    resolve_payment_status,
    resolve_raw_status,
)
from web.deps import raise_service_error

router = APIRouter(prefix="/payments", tags=["Payments"])

logger = logging.getLogger(__name__)


@router.post(
    "/initiate",
    response_model=PaymentInitiateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Create a pending payment and push the mobile-money request in the background.",
)
def create_payment(
    payload: PaymentInitiateRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: SessionFactory = Depends(get_session_factory),
) -> PaymentInitiateResponse:
    try:
        record = initiate_payment(
            db,
            name=payload.name,
            phone_number=payload.phoneNumber,
            package_name=payload.package,
            installation_id=payload.installationId,
        )
    except ServiceError as exc:
        raise_service_error(exc)

    background_tasks.add_task(dispatch_gateway_payment, record.order_id, session_factory)
    return PaymentInitiateResponse(orderId=record.order_id, status=record.status)


@router.get(
    "/status/{order_id}",
    response_model=PaymentStatusResponse,
    response_model_exclude_none=True,
    summary="Poll the status of a payment; includes the access token once completed.",
)
def read_payment_status(order_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    try:
        return get_payment_status(db, order_id)
    except ServiceError as exc:
        raise_service_error(exc)


@router.post(
    "/webhook",
    response_model=PaymentWebhookResponse,
    summary="Receive ZenoPay payment status notifications.",
)
async def handle_payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    session_factory: SessionFactory = Depends(get_session_factory),
) -> PaymentWebhookResponse:
    try:
        key_valid = verify_webhook_api_key(request.headers.get("x-api-key"))
    except RuntimeError as exc:
        logger.error("Payment webhook verification unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "payments.webhook_verification_unavailable", "message": str(exc)},
        ) from exc
    if not key_valid:
        logger.warning("Payment webhook rejected: invalid api key.")
        record_webhook_result("unauthorized")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "payments.webhook_unauthorized", "message": "Webhook api key is invalid."},
        )

    raw_body = await request.body()
    try:
        event = json.loads(raw_body.decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        logger.warning("Payment webhook payload decode failed: %s", exc)
        record_webhook_result("invalid_payload")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "payments.webhook_payload_invalid", "message": "Webhook body is not valid JSON."},
        ) from exc
    if not isinstance(event, dict):
        record_webhook_result("invalid_payload")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "payments.webhook_payload_invalid", "message": "Webhook body must be a JSON object."},
        )

    order_id = resolve_order_id(event)
    raw_status = resolve_raw_status(event)
    payment_status = resolve_payment_status(event)
    log_context = {
        "order_id": order_id,
        "status": raw_status,
        "reference": resolve_gateway_reference(event),
        "retry_count": request.headers.get("x-retry-count"),
    }
    logger.info("Received payment webhook.", extra={"webhook": log_context})

    if not order_id or payment_status is None:
        logger.warning("Payment webhook missing order_id or payment_status.", extra={"webhook": log_context})
        append_webhook_audit_entry(session_factory, result="invalid_payload", context=log_context, payload=event)
        record_webhook_result("invalid_payload")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "payments.webhook_payload_invalid",
                "message": "order_id and a known payment_status are required.",
            },
        )

    try:
        result = reconcile_payment(
            db,
            order_id,
            payment_status,
            gateway_reference=log_context["reference"],
            source="webhook",
        )
    except ValidationError as exc:
        append_webhook_audit_entry(
            session_factory, result="invalid_payload", context=log_context, payload=event, message=exc.message
        )
        record_webhook_result("invalid_payload")
        raise_service_error(exc)
    except PersistenceError as exc:
        logger.error("Payment webhook persistence failure: %s", exc.message, extra={"webhook": log_context})
        append_webhook_audit_entry(
            session_factory, result="persist_failed", context=log_context, payload=event, message=exc.message
        )
        record_webhook_result("persist_failed")
        raise_service_error(exc)
    except Exception as exc:  # pragma: no cover - defensive logging
        logger.exception("Payment webhook processing failed: orderId=%s", order_id)
        append_webhook_audit_entry(
            session_factory, result="processing_failed", context=log_context, payload=event, message=str(exc)
        )
        record_webhook_result("processing_failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "payments.webhook_failed", "message": "Payment webhook processing failed."},
        ) from exc

    logger.info(
        "Payment webhook reconciled.",
        extra={"webhook": {**log_context, "outcome": result.outcome}},
    )
    append_webhook_audit_entry(session_factory, result=result.outcome, context=log_context, payload=event)
    record_webhook_result(result.outcome)
    return PaymentWebhookResponse(status="ok", result=result.outcome)


__all__ = ["router"]
