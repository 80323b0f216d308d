from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from core.subscription_constants import DEFAULT_CURRENCY, TransactionStatus
from database import Base


class PaymentTransaction(Base):
    """One row per payment attempt, keyed by the generated order id."""

    __tablename__ = "payment_transactions"
    __table_args__ = {"extend_existing": True}

    order_id = Column(String(64), primary_key=True)
    installation_id = Column(String(128), nullable=False, index=True)
    customer_name = Column(String(160), nullable=True)
    phone_number = Column(String(32), nullable=True, index=True)
    package_name = Column(String(80), nullable=False)
    amount = Column(Integer, nullable=False)
    currency = Column(String(8), nullable=False, default=DEFAULT_CURRENCY)
    status = Column(String(16), nullable=False, default=TransactionStatus.PENDING.value, index=True)
    gateway_reference = Column(String(128), nullable=True)
    failure_reason = Column(Text, nullable=True)
    access_token = Column(Text, nullable=True)
    granted_days = Column(Integer, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    # Set once the user-side expiry extension for a COMPLETED row has been written.
    grant_applied_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class PaymentWebhookEvent(Base):
    """Audit trail of payment webhook deliveries."""

    __tablename__ = "payment_webhook_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(String(64), nullable=True, index=True)
    status = Column(String(16), nullable=True)
    result = Column(String(48), nullable=False, index=True)
    retry_count = Column(Integer, nullable=True)
    message = Column(Text, nullable=True)
    context = Column(JSON, nullable=True)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
