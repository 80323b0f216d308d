"""Pydantic schemas for the admin API."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from schemas.api.auth import AppUserSchema


class AdminUserListResponse(BaseModel):
    items: List[AppUserSchema]
    total: int


class AppSettingSchema(BaseModel):
    key: str
    value: str
    description: Optional[str] = None
    updatedAt: Optional[str] = None


class AppSettingListResponse(BaseModel):
    items: List[AppSettingSchema]


class AppSettingUpdateRequest(BaseModel):
    value: str = Field(..., description="New setting value; stored as text.")
    description: Optional[str] = Field(default=None, max_length=500)


class AdminDashboardResponse(BaseModel):
    totalUsers: int
    premiumUsers: int
    activePackages: int
    transactions: Dict[str, int] = Field(default_factory=dict, description="Transaction counts by status.")
