"""Key/value application settings."""

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func

from database import Base


class AppSetting(Base):
    __tablename__ = "app_settings"
    __table_args__ = {"extend_existing": True}

    key = Column(String(120), primary_key=True)
    value = Column(Text, nullable=False)
    description = Column(String(255), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
