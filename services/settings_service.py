"""Persistence helpers for key/value app settings with cache write-through."""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.env import env_float, env_str
from core.logging import get_logger
from database import SessionFactory
from models.setting import AppSetting
from services.errors import NotFoundError, PersistenceError, ValidationError
from services.settings_cache import SettingsCache

logger = get_logger(__name__)

_MAX_KEY_LENGTH = 120


def default_settings() -> Dict[str, Tuple[str, str]]:
    """Settings created on bootstrap when missing: key -> (value, description)."""
    return {
        "whatsappLink": (
            env_str("WHATSAPP_LINK", "https://wa.me/255000000000") or "https://wa.me/255000000000",
            "Support WhatsApp contact shown in the app.",
        ),
    }


def load_settings_map(session_factory: SessionFactory) -> Dict[str, str]:
    """Read every setting with a short-lived session (used as the cache loader)."""
    session = session_factory()
    try:
        rows = session.query(AppSetting).all()
        return {row.key: row.value for row in rows}
    finally:
        session.close()


def build_settings_cache(session_factory: SessionFactory, *, ttl_seconds: Optional[float] = None) -> SettingsCache:
    ttl = ttl_seconds if ttl_seconds is not None else env_float("SETTINGS_CACHE_TTL_SECONDS", 300.0, minimum=1.0)
    return SettingsCache(
        lambda: load_settings_map(session_factory),
        ttl_seconds=ttl,
        retry_backoff_seconds=env_float("SETTINGS_CACHE_RETRY_SECONDS", 5.0, minimum=0.0),
    )


def _normalize_key(key: Optional[str]) -> str:
    normalized = (key or "").strip()
    if not normalized:
        raise ValidationError("settings.key_required", "Setting key is required.")
    if len(normalized) > _MAX_KEY_LENGTH:
        raise ValidationError("settings.key_too_long", f"Setting key must be at most {_MAX_KEY_LENGTH} characters.")
    return normalized


def list_settings(session: Session) -> List[AppSetting]:
    return session.query(AppSetting).order_by(AppSetting.key.asc()).all()


def get_setting(session: Session, key: str) -> Optional[AppSetting]:
    return session.get(AppSetting, _normalize_key(key))


def upsert_setting(
    session: Session,
    cache: Optional[SettingsCache],
    *,
    key: str,
    value: Optional[str],
    description: Optional[str] = None,
) -> AppSetting:
    """Persist a setting, then mirror it into the cache."""

    normalized_key = _normalize_key(key)
    if value is None:
        raise ValidationError("settings.value_required", "Setting value is required.")

    record = get_setting(session, normalized_key)
    if record is None:
        record = AppSetting(key=normalized_key, value=str(value), description=description)
        session.add(record)
    else:
        record.value = str(value)
        if description is not None:
            record.description = description
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Failed to persist setting %s: %s", normalized_key, exc)
        raise PersistenceError("settings.persist_failed", "Failed to save setting.") from exc
    session.refresh(record)

    if cache is not None:
        cache.set(normalized_key, record.value)
    logger.info("Setting %s updated.", normalized_key)
    return record


def delete_setting(session: Session, cache: Optional[SettingsCache], key: str) -> None:
    normalized_key = _normalize_key(key)
    record = get_setting(session, normalized_key)
    if record is None:
        raise NotFoundError("settings.not_found", f"Setting '{normalized_key}' does not exist.")
    session.delete(record)
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Failed to delete setting %s: %s", normalized_key, exc)
        raise PersistenceError("settings.delete_failed", "Failed to delete setting.") from exc

    if cache is not None:
        cache.delete(normalized_key)
    logger.info("Setting %s deleted.", normalized_key)


def public_settings(cache: SettingsCache) -> Dict[str, str]:
    """Read-only key -> value projection exposed to the app."""
    return dict(cache.snapshot())


def ensure_default_settings(session: Session) -> List[str]:
    """Insert default settings that are missing; returns the keys created."""
    created: List[str] = []
    for key, (value, description) in default_settings().items():
        if session.get(AppSetting, key) is None:
            session.add(AppSetting(key=key, value=value, description=description))
            created.append(key)
    if created:
        session.commit()
        logger.info("Seeded default settings: %s", ", ".join(created))
    return created


__all__ = [
    "build_settings_cache",
    "default_settings",
    "delete_setting",
    "ensure_default_settings",
    "get_setting",
    "list_settings",
    "load_settings_map",
    "public_settings",
    "upsert_setting",
]
