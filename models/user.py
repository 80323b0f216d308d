"""SQLAlchemy model for app users keyed by installation identifier."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from database import Base


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class User(Base):
    """One row per device installation.

    Premium status is derived from ``subscription_expires_at``; there is no
    stored premium flag that could drift from the expiry.
    """

    __tablename__ = "users"
    __table_args__ = {"extend_existing": True}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    installation_id = Column(String(128), nullable=False, unique=True, index=True)
    display_name = Column(String(160), nullable=True)
    phone_number = Column(String(32), nullable=True, unique=True)
    device_id = Column(String(128), nullable=True)
    subscription_expires_at = Column(DateTime(timezone=True), nullable=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def expiry_utc(self) -> Optional[datetime]:
        return ensure_utc(self.subscription_expires_at)

    def is_premium_at(self, now: datetime) -> bool:
        expiry = self.expiry_utc()
        return expiry is not None and expiry > ensure_utc(now)
