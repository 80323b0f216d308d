"""Unauthenticated endpoints used by the app before login."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from schemas.api.public import PublicConfigResponse, SubscriptionPlanSchema, SubscriptionPlansResponse
from services.package_catalog import list_packages, serialize_package
from services.settings_cache import SettingsCache
from services.settings_service import public_settings
from web.deps import get_settings_cache

router = APIRouter(tags=["Public"])


@router.get("/config", response_model=PublicConfigResponse, summary="Public app settings.")
def read_public_config(cache: SettingsCache = Depends(get_settings_cache)) -> PublicConfigResponse:
    return PublicConfigResponse(settings=public_settings(cache))


@router.get("/subscriptions/plans", response_model=SubscriptionPlansResponse, summary="Active subscription packages.")
def read_subscription_plans(db: Session = Depends(get_db)) -> SubscriptionPlansResponse:
    packages = list_packages(db, active_only=True)
    return SubscriptionPlansResponse(plans=[SubscriptionPlanSchema(**serialize_package(item)) for item in packages])


__all__ = ["router"]
