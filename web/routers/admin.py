"""Admin endpoints for users, payments, settings and the dashboard."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from core.subscription_constants import parse_transaction_status
from database import get_db
from models.package import SubscriptionPackage
from models.user import User
from schemas.api.admin import (
    AdminDashboardResponse,
    AdminUserListResponse,
    AppSettingListResponse,
    AppSettingSchema,
    AppSettingUpdateRequest,
)
from schemas.api.auth import AdminLoginRequest, AdminLoginResponse, AdminSchema, AppUserSchema
from schemas.api.payments import (
    GrantRecoveryResponse,
    PaymentTransactionListResponse,
    PaymentTransactionSchema,
    PaymentWebhookEventListResponse,
    PaymentWebhookEventSchema,
)
from services import settings_service
from services.admin_auth_service import authenticate_admin, serialize_admin
from services.errors import ServiceError
from services.payments import transaction_store
from services.payments.reconciliation import resume_pending_grants
from services.payments.webhook_audit import read_recent_webhook_entries
from services.settings_cache import SettingsCache
from services.user_service import delete_user, list_users, serialize_user
from web.deps import get_settings_cache, raise_service_error
from web.deps_admin import AdminSession, require_admin

router = APIRouter(prefix="/admin", tags=["Admin"])


def _serialize_setting(record) -> AppSettingSchema:
    return AppSettingSchema(
        key=record.key,
        value=record.value,
        description=record.description,
        updatedAt=record.updated_at.isoformat() if record.updated_at else None,
    )


@router.post("/login", response_model=AdminLoginResponse)
def login_admin(payload: AdminLoginRequest, db: Session = Depends(get_db)) -> AdminLoginResponse:
    try:
        result = authenticate_admin(db, username=payload.username, password=payload.password)
    except ServiceError as exc:
        raise_service_error(exc)
    return AdminLoginResponse(
        admin=AdminSchema(**serialize_admin(result.admin)),
        accessToken=result.token,
        expiresIn=result.expires_in,
    )


@router.get("/me", response_model=AdminSchema)
def read_admin_me(session: AdminSession = Depends(require_admin)) -> AdminSchema:
    return AdminSchema(**serialize_admin(session.admin))


@router.get("/users", response_model=AdminUserListResponse)
def list_app_users(
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
    _: AdminSession = Depends(require_admin),
) -> AdminUserListResponse:
    now = datetime.now(timezone.utc)
    users = list_users(db, limit=limit)
    total = db.query(func.count(User.id)).scalar() or 0
    return AdminUserListResponse(
        items=[AppUserSchema(**serialize_user(user, now=now)) for user in users],
        total=int(total),
    )


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_app_user(
    user_id: str,
    db: Session = Depends(get_db),
    _: AdminSession = Depends(require_admin),
) -> Response:
    try:
        delete_user(db, user_id)
    except ServiceError as exc:
        raise_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/payments", response_model=PaymentTransactionListResponse)
def list_payments(
    limit: int = Query(100, ge=1, le=500),
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    _: AdminSession = Depends(require_admin),
) -> PaymentTransactionListResponse:
    parsed_status = None
    if status_filter:
        parsed_status = parse_transaction_status(status_filter)
        if parsed_status is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "payments.status_invalid", "message": f"Unknown status '{status_filter}'."},
            )
    records = transaction_store.list_transactions(db, limit=limit, status=parsed_status)
    return PaymentTransactionListResponse(
        items=[PaymentTransactionSchema(**transaction_store.serialize_transaction(record)) for record in records],
        counts=transaction_store.count_by_status(db),
    )


@router.get("/payments/webhook-events", response_model=PaymentWebhookEventListResponse)
def list_webhook_events(
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    _: AdminSession = Depends(require_admin),
) -> PaymentWebhookEventListResponse:
    entries = read_recent_webhook_entries(db, limit=limit)
    return PaymentWebhookEventListResponse(items=[PaymentWebhookEventSchema(**entry) for entry in entries])


@router.post("/payments/reconcile", response_model=GrantRecoveryResponse)
def resume_grants(
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    _: AdminSession = Depends(require_admin),
) -> GrantRecoveryResponse:
    summary = resume_pending_grants(db, limit=limit)
    return GrantRecoveryResponse(resumed=summary.resumed, skipped=summary.skipped, failed=summary.failed)


@router.get("/settings", response_model=AppSettingListResponse)
def list_app_settings(
    db: Session = Depends(get_db),
    _: AdminSession = Depends(require_admin),
) -> AppSettingListResponse:
    return AppSettingListResponse(items=[_serialize_setting(record) for record in settings_service.list_settings(db)])


@router.get("/settings/{key}", response_model=AppSettingSchema)
def read_app_setting(
    key: str,
    db: Session = Depends(get_db),
    _: AdminSession = Depends(require_admin),
) -> AppSettingSchema:
    try:
        record = settings_service.get_setting(db, key)
    except ServiceError as exc:
        raise_service_error(exc)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "settings.not_found", "message": f"Setting '{key.strip()}' does not exist."},
        )
    return _serialize_setting(record)


@router.put("/settings/{key}", response_model=AppSettingSchema)
def update_app_setting(
    key: str,
    payload: AppSettingUpdateRequest,
    db: Session = Depends(get_db),
    cache: SettingsCache = Depends(get_settings_cache),
    _: AdminSession = Depends(require_admin),
) -> AppSettingSchema:
    try:
        record = settings_service.upsert_setting(
            db, cache, key=key, value=payload.value, description=payload.description
        )
    except ServiceError as exc:
        raise_service_error(exc)
    return _serialize_setting(record)


@router.delete("/settings/{key}", status_code=status.HTTP_204_NO_CONTENT)
def delete_app_setting(
    key: str,
    db: Session = Depends(get_db),
    cache: SettingsCache = Depends(get_settings_cache),
    _: AdminSession = Depends(require_admin),
) -> Response:
    try:
        settings_service.delete_setting(db, cache, key)
    except ServiceError as exc:
        raise_service_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/dashboard", response_model=AdminDashboardResponse)
def read_dashboard(
    db: Session = Depends(get_db),
    _: AdminSession = Depends(require_admin),
) -> AdminDashboardResponse:
    now = datetime.now(timezone.utc)
    total_users = db.query(func.count(User.id)).scalar() or 0
    premium_users = (
        db.query(func.count(User.id)).filter(User.subscription_expires_at > now).scalar() or 0
    )
    active_packages = (
        db.query(func.count(SubscriptionPackage.id)).filter(SubscriptionPackage.is_active.is_(True)).scalar() or 0
    )
    return AdminDashboardResponse(
        totalUsers=int(total_users),
        premiumUsers=int(premium_users),
        activePackages=int(active_packages),
        transactions=transaction_store.count_by_status(db),
    )


__all__ = ["router"]
