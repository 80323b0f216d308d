from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.exc import SQLAlchemyError

from core.env import env_list
from core.env_utils import load_dotenv_if_available, require_env_vars
from core.logging import get_logger
from database import SessionLocal, get_session_factory
from services.admin_auth_service import ensure_bootstrap_admin
from services.package_catalog import ensure_default_packages
from services.settings_service import build_settings_cache, ensure_default_settings
from web import routers

load_dotenv_if_available()

logger = get_logger(__name__)

app = FastAPI(
    title="TvMax API",
    description="Subscriptions, mobile-money payments and app settings for the TvMax streaming app.",
    version="0.1.0",
)

origins = env_list("ALLOWED_ORIGINS", ["http://localhost:3000", "http://localhost:5173"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.settings_cache = build_settings_cache(get_session_factory())


@app.get("/", summary="Health Check", tags=["Default"])
def health_check():
    """Basic liveness probe."""
    return {"status": "ok", "message": "TvMax API is running."}


@app.get("/metrics", include_in_schema=False)
def prometheus_metrics():
    """Expose Prometheus metrics."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(routers.public.router, prefix="/api")
app.include_router(routers.health.router, prefix="/api")
app.include_router(routers.auth.router, prefix="/api")
app.include_router(routers.payments.router, prefix="/api")
app.include_router(routers.admin.router, prefix="/api")


@app.on_event("startup")
async def seed_reference_data() -> None:
    """Seed default packages, settings and the bootstrap admin, then warm the settings cache."""
    require_env_vars(["APP_JWT_SECRET", "ZENOPAY_API_KEY"], context="api")
    session = SessionLocal()
    try:
        ensure_default_packages(session)
        ensure_default_settings(session)
        ensure_bootstrap_admin(session)
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Reference data seeding failed: %s", exc)
    finally:
        session.close()
    app.state.settings_cache.reload()
