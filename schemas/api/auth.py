"""Pydantic schemas for device login and admin authentication."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

AuthErrorCode = Literal[
    "auth.required",
    "auth.installation_id_required",
    "auth.installation_id_invalid",
    "auth.token_expired",
    "auth.token_invalid",
    "auth.user_not_found",
    "admin.credentials_required",
    "admin.invalid_credentials",
    "admin.forbidden",
]


class AppUserSchema(BaseModel):
    id: str
    installationId: str
    name: Optional[str] = None
    phoneNumber: Optional[str] = None
    isPremium: bool = False
    premiumExpiryDate: Optional[str] = None
    lastLogin: Optional[str] = None
    createdAt: Optional[str] = None


class DeviceLoginRequest(BaseModel):
    installationId: str = Field(..., min_length=1, max_length=128, description="Client-generated installation id.")
    deviceId: Optional[str] = Field(default=None, max_length=128, description="Informational device identifier.")
    name: Optional[str] = Field(default=None, max_length=160, description="Optional display name.")


class DeviceLoginResponse(BaseModel):
    user: AppUserSchema
    accessToken: str
    tokenType: str = "bearer"
    expiresIn: int = Field(..., description="Access token TTL in seconds.")


class AdminLoginRequest(BaseModel):
    username: str = Field(..., min_length=1, description="Admin username or email.")
    password: str = Field(..., min_length=1)


class AdminSchema(BaseModel):
    id: str
    username: str
    email: str
    role: str
    isActive: bool = True
    lastLogin: Optional[str] = None


class AdminLoginResponse(BaseModel):
    admin: AdminSchema
    accessToken: str
    tokenType: str = "bearer"
    expiresIn: int


class AuthErrorResponse(BaseModel):
    code: AuthErrorCode
    message: str
