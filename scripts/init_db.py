import time
from typing import Callable

from scripts._path import bootstrap

bootstrap("init_db")

from sqlalchemy.exc import OperationalError

import models  # noqa: F401
from core.logging import get_logger
from database import Base, SessionLocal, engine
from services.admin_auth_service import ensure_bootstrap_admin
from services.package_catalog import ensure_default_packages
from services.settings_service import ensure_default_settings

logger = get_logger(__name__)


def _retry(operation: Callable[[], None], *, retries: int = 7, delay: float = 3.0) -> None:
    for attempt in range(1, retries + 1):
        try:
            operation()
            return
        except OperationalError as exc:
            if attempt == retries:
                raise
            logger.warning(
                "Database not ready yet (attempt %d/%d). Retrying in %.1f seconds: %s",
                attempt,
                retries,
                delay,
                exc,
            )
            time.sleep(delay)


def _seed_reference_data() -> None:
    session = SessionLocal()
    try:
        packages = ensure_default_packages(session)
        settings = ensure_default_settings(session)
        admin = ensure_bootstrap_admin(session)
        logger.info(
            "Reference data ensured: packages=%d settings=%d bootstrap_admin=%s",
            len(packages),
            len(settings),
            admin.username if admin else "-",
        )
    finally:
        session.close()


def init_db() -> None:
    logger.info("Starting database bootstrap.")
    try:
        _retry(lambda: Base.metadata.create_all(bind=engine))
        logger.info("SQLAlchemy model tables ensured.")
        _retry(_seed_reference_data)
    except Exception as exc:
        logger.error("Database initialization failed: %s", exc, exc_info=True)
        raise


if __name__ == "__main__":
    init_db()
