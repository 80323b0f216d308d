"""Pydantic schemas for public/unauthenticated APIs."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class PublicConfigResponse(BaseModel):
    settings: Dict[str, str] = Field(default_factory=dict, description="Public app settings, key -> value.")


class SubscriptionPlanSchema(BaseModel):
    name: str
    price: int
    currency: str
    durationDays: int


class SubscriptionPlansResponse(BaseModel):
    plans: List[SubscriptionPlanSchema]


class HealthResponse(BaseModel):
    status: str = "ok"
    database: Optional[str] = None
