"""SQLAlchemy model for subscription packages (plans)."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from database import Base


class SubscriptionPackage(Base):
    __tablename__ = "subscription_packages"
    __table_args__ = {"extend_existing": True}

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(80), nullable=False)
    # Lower-cased name; packages are matched case-insensitively.
    name_key = Column(String(80), nullable=False, unique=True, index=True)
    price = Column(Integer, nullable=False)
    currency = Column(String(8), nullable=False, default="TZS")
    validity_days = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
