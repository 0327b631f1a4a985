"""FastAPI main application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from authz.core.config import settings
from authz.core.middleware import RequestIdFilter, setup_middleware
from authz.core.exceptions import AuthzError, StoreUnavailable
from authz.db.session import create_db_engine, make_session_factory
from authz.services.store import AuthorizationStore
from authz.services.decision_engine import DecisionEngine
from authz.services.permission_cache import (
    RedisPermissionCache, build_permission_cache, install_invalidation_hooks,
)

from authz.api.permissions import router as permissions_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s",
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestIdFilter())
logger = logging.getLogger("authz")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the store, cache and engine once and share them through app.state."""
    logger.info("🚀 Starting %s", settings.APP_NAME)
    engine = create_db_engine()
    session_factory = make_session_factory(engine)

    cache = build_permission_cache()
    if cache is not None:
        install_invalidation_hooks(session_factory, cache)
        logger.info("✅ Permission cache: %s", type(cache).__name__)
        if isinstance(cache, RedisPermissionCache):
            if cache.health_check():
                logger.info("✅ Redis connected")
            else:
                logger.warning("⚠️  Redis not available, permission cache will miss")
    else:
        logger.warning("⚠️  Permission cache disabled")

    store = AuthorizationStore(session_factory)
    app.state.session_factory = session_factory
    app.state.permission_cache = cache
    app.state.decision_engine = DecisionEngine(store, cache=cache)

    yield

    engine.dispose()
    logger.info("🔻 Shutting down %s", settings.APP_NAME)


app = FastAPI(
    title="Permission Resolution API",
    description="Role and direct-grant permission decisions for the WhatsApp panel",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Middleware
setup_middleware(app)


@app.exception_handler(AuthzError)
async def authz_exception_handler(request: Request, exc: AuthzError):
    status_code = 503 if isinstance(exc, StoreUnavailable) else 400
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code},
    )

# Register routers
app.include_router(permissions_router, prefix="/api")


@app.get("/api/health")
async def health():
    """Quick health check endpoint."""
    return {"status": "ok"}
