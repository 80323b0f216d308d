import os
from typing import Callable, Generator, Iterable

import pytest

os.environ.setdefault("DATABASE_ALLOW_NON_POSTGRES", "1")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("DATABASE_URL", os.getenv("DATABASE_URL", os.environ["TEST_DATABASE_URL"]))
os.environ.setdefault("APP_JWT_SECRET", "test-jwt-secret-with-enough-entropy-000")
os.environ.setdefault("ZENOPAY_API_KEY", "test-zenopay-key")
os.environ.setdefault("ADMIN_ARGON2_TIME_COST", "1")
os.environ.setdefault("ADMIN_ARGON2_MEMORY_COST", "8192")

from fastapi import APIRouter, FastAPI
from sqlalchemy import create_engine
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.engine import Engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import database as database_module
import models  # noqa: F401
from database import Base, IS_POSTGRES
from services.settings_cache import SettingsCache
from services.settings_service import build_settings_cache

# Provide a lightweight fallback for the PostgreSQL-only UUID column type when using SQLite.
if not IS_POSTGRES:

    @compiles(UUID, "sqlite")  # type: ignore[misc]
    def _compile_uuid_sqlite(_element, _compiler, **_kw):  # pragma: no cover - sqlite compat
        return "TEXT"


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory database per test."""
    test_engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def settings_cache(session_factory: sessionmaker) -> SettingsCache:
    return build_settings_cache(session_factory, ttl_seconds=300.0)


@pytest.fixture()
def make_app(session_factory: sessionmaker, settings_cache: SettingsCache) -> Callable[..., FastAPI]:
    """Build a bare FastAPI app around ``routers`` wired to the per-test database."""

    def _get_db() -> Generator[Session, None, None]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    def _factory(routers: Iterable[APIRouter], *, prefix: str = "/api") -> FastAPI:
        app = FastAPI()
        for router in routers:
            app.include_router(router, prefix=prefix)
        app.state.settings_cache = settings_cache
        app.dependency_overrides[database_module.get_db] = _get_db
        app.dependency_overrides[database_module.get_session_factory] = lambda: session_factory
        return app

    return _factory
