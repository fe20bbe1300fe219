"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from credential_engine.api.errors import install_error_handlers
from credential_engine.api.otp import router as otp_router
from credential_engine.api.sessions import router as sessions_router
from credential_engine.cache.client import CacheClient
from credential_engine.cache.rate_limiter import RateLimiter
from credential_engine.cache.session_cache import SessionCache
from credential_engine.config import settings
from credential_engine.database.engine import async_session_factory, init_db
from credential_engine.services.email_service import EmailService
from credential_engine.services.session_manager import SessionManager
from credential_engine.services.verification import VerificationEngine

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


def build_services(app: FastAPI, cache: CacheClient, session_factory=async_session_factory) -> None:
    """Wire the engine and session manager onto ``app.state``."""
    limiter = RateLimiter(cache)
    app.state.cache = cache
    app.state.verification_engine = VerificationEngine(
        session_factory, cache, limiter, EmailService()
    )
    app.state.session_manager = SessionManager(SessionCache(cache), session_factory, limiter)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hook."""
    logger.info("Starting %s …", settings.app_name)
    await init_db()
    logger.info("Database initialised")
    cache = CacheClient()
    await cache.connect()
    build_services(app, cache)
    yield
    logger.info("Shutting down %s …", settings.app_name)
    await cache.close()


app = FastAPI(
    title=settings.app_name,
    description="One-time codes and cached sessions for the marketplace auth service",
    version="0.1.0",
    lifespan=lifespan,
)

install_error_handlers(app)
app.include_router(otp_router)
app.include_router(sessions_router)


@app.get("/health")
async def health_check():
    """Simple liveness probe."""
    cache = getattr(app.state, "cache", None)
    return {
        "status": "healthy",
        "app": settings.app_name,
        "cache": "connected" if cache is not None and cache.connected else "disconnected",
    }
