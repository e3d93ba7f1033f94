"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

from passkey_bridge.api.routes import passkey
from passkey_bridge.config import settings
from passkey_bridge.core.errors import AdapterUnavailable, InternalError, PasskeyError
from passkey_bridge.db import database
from passkey_bridge.db.exceptions import ConnectionError as StorageConnectionError
from passkey_bridge.middleware.rate_limiter import limiter, rate_limit_exceeded_handler
from passkey_bridge.middleware.request_id import RequestIDLogFilter, RequestIDMiddleware
from passkey_bridge.models.envelope import passkey_error_response
from passkey_bridge.services.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)

# Configure logging format based on dev_mode
if not settings.dev_mode:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='{"time":"%(asctime)s","level":"%(levelname)s","name":"%(name)s","request_id":"%(request_id)s","message":"%(message)s"}',
    )
else:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s [%(request_id)s] %(name)s: %(message)s",
    )
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestIDLogFilter())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - handles startup and shutdown."""
    # Startup
    database.init_db()
    start_scheduler(
        inactive_days=settings.passkey_cleanup_inactive_days,
        disable_interval=settings.passkey_cleanup_disable_interval,
    )
    yield
    # Shutdown
    stop_scheduler()
    await database.close_db()

app = FastAPI(
    title="Passkey Bridge API",
    description="Passkey registration and authentication for mobile clients",
    version="0.1.0",
    openapi_url="/api/v1/openapi.json",
    docs_url="/docs" if settings.dev_mode else None,
    redoc_url="/redoc" if settings.dev_mode else None,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

app.state.limiter = limiter


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Cache-Control"] = "no-store"
        if not settings.dev_mode:
            response.headers["Strict-Transport-Security"] = (
                "max-age=63072000; includeSubDomains"
            )
        return response


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestIDMiddleware)


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------

app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(PasskeyError)
async def _passkey_error_handler(request: Request, exc: PasskeyError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error("Passkey ceremony failed on %s %s", request.method, request.url.path)
    else:
        logger.info("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=passkey_error_response(exc))


@app.exception_handler(StorageConnectionError)
async def _storage_unavailable_handler(request: Request, exc: StorageConnectionError) -> JSONResponse:
    logger.error("Storage unavailable on %s %s: %s", request.method, request.url.path, exc)
    error = AdapterUnavailable()
    return JSONResponse(status_code=error.status_code, content=passkey_error_response(error))


@app.exception_handler(Exception)
async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception on %s %s", request.method, request.url.path, exc_info=True)
    detail = str(exc) if settings.dev_mode else "Internal server error"
    return JSONResponse(
        status_code=500,
        content={
            "status": "error",
            "data": None,
            "errors": [{"code": "INTERNAL_ERROR", "message": detail, "field": None}],
            "meta": {},
        },
    )


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Request-ID"],
)


# ---------------------------------------------------------------------------
# Routers (mounted under /api/v1/)
# ---------------------------------------------------------------------------

app.include_router(passkey.router, prefix="/api/v1/passkey", tags=["passkey"])

# ---------------------------------------------------------------------------
# System endpoints
# ---------------------------------------------------------------------------


@app.get("/health")
async def health_check() -> dict:
    """Liveness check — verifies the API process is alive."""
    return {
        "status": "healthy",
        "services": {
            "webauthn_rp_id": settings.webauthn_rp_id,
            "passkey_cleanup": "enabled" if settings.passkey_cleanup_inactive_days > 0 else "disabled",
        },
    }


@app.get("/health/ready")
async def readiness_check() -> JSONResponse:
    """Readiness check — verifies the database is reachable."""
    checks: dict[str, str] = {}

    try:
        if database.engine is None:
            raise RuntimeError("engine not initialized")
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception:
        logger.warning("Readiness probe: database unavailable", exc_info=True)
        checks["database"] = "unavailable"

    all_ok = all(v == "ok" for v in checks.values())
    return JSONResponse(
        status_code=200 if all_ok else 503,
        content={"status": "ready" if all_ok else "degraded", "services": checks},
    )


@app.get("/api/v1/version")
async def version() -> dict:
    """Return build / version metadata."""
    return {
        "version": app.version,
        "title": app.title,
        "api_prefix": "/api/v1",
    }


@app.get("/")
async def root() -> dict:
    """Root endpoint."""
    return {"message": "Passkey Bridge API", "docs": "/docs"}
