"""Payment API schemas."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from schemas.api.auth import AppUserSchema


class PaymentInitiateRequest(BaseModel):
    """Fields are checked by the payment service so missing values map to 400."""

    name: Optional[str] = Field(default=None, max_length=160, description="Payer name shown on the mobile-money prompt.")
    phoneNumber: Optional[str] = Field(default=None, max_length=32, description="Mobile-money phone number to charge.")
    package: Optional[str] = Field(default=None, description="Package name, matched case-insensitively.")
    installationId: Optional[str] = Field(default=None, max_length=128, description="Installation id of the app.")


class PaymentInitiateResponse(BaseModel):
    orderId: str
    status: str = "PENDING"


class PaymentStatusResponse(BaseModel):
    orderId: str
    status: str
    reason: Optional[str] = Field(default=None, description="Failure reason for FAILED/EXPIRED transactions.")
    token: Optional[str] = Field(default=None, description="Access token, present once COMPLETED.")
    user: Optional[AppUserSchema] = None


class PaymentWebhookResponse(BaseModel):
    status: str = "ok"
    result: str


class PaymentTransactionSchema(BaseModel):
    orderId: str
    installationId: str
    customerName: Optional[str] = None
    phoneNumber: Optional[str] = None
    package: str
    amount: int
    currency: str
    status: str
    gatewayReference: Optional[str] = None
    failureReason: Optional[str] = None
    grantedDays: Optional[int] = None
    grantApplied: bool = False
    createdAt: Optional[str] = None
    completedAt: Optional[str] = None


class PaymentTransactionListResponse(BaseModel):
    items: List[PaymentTransactionSchema]
    counts: Dict[str, int] = Field(default_factory=dict)


class PaymentWebhookEventSchema(BaseModel):
    loggedAt: Optional[str] = None
    orderId: Optional[str] = None
    status: Optional[str] = None
    result: str
    message: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    payload: Optional[Dict[str, Any]] = None


class PaymentWebhookEventListResponse(BaseModel):
    items: List[PaymentWebhookEventSchema]


class GrantRecoveryResponse(BaseModel):
    resumed: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
