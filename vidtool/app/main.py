"""
VID Issuing Tool Application Factory
====================================

Administrative service that issues Microsoft Entra Verified ID credentials to
directory users and tracks the outcome of each issuance.

Architecture:
    Operator browser → this service → Entra ID / Verified ID / Microsoft Graph
    Verified ID request service → this service (issuance callbacks)

Routers:
    - /auth/*             : Operator sign-in (OIDC login, callback, logout, status)
    - /api/credentials/*  : Contract catalog, issuance, callback, status
    - /api/users/*        : Directory user lookup
    - /api/admin/*        : Statistics, cleanup, troubleshooting, captured logs
    - /health             : Health check endpoint

Running the Service:
    Development:
        uvicorn vidtool.app.main:app --reload --host 0.0.0.0 --port 3000

    With custom log level:
        LOG_LEVEL=DEBUG uvicorn vidtool.app.main:app --reload
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from vidtool.app.admin.routes import admin_router
from vidtool.app.auth.routes import auth_router
from vidtool.app.auth.session import session_id_from_request
from vidtool.app.config import Settings, get_settings, validate_configuration
from vidtool.app.context import AppContext
from vidtool.app.credentials.routes import credentials_router
from vidtool.app.credentials.store import RequestStore
from vidtool.app.errors import VidToolError
from vidtool.app.logbuffer import BufferHandler, LogBuffer
from vidtool.app.users.routes import users_router

SERVICE_NAME = "vid-issuing-tool"
VERSION = "1.0.0"

logger = logging.getLogger("vidtool.main")


def setup_logging(log_level: str = "INFO", buffer: Optional[LogBuffer] = None) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        buffer: Log buffer that should receive a copy of every record
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(
        level=level,
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    root = logging.getLogger()
    root.setLevel(level)

    # One buffer handler per process; a new application replaces the old one
    for handler in [h for h in root.handlers if isinstance(h, BufferHandler)]:
        root.removeHandler(handler)

    if buffer is not None:
        root.addHandler(BufferHandler(buffer))


async def sweep_expired_records(store: RequestStore, interval_seconds: float) -> None:
    """Periodically remove expired issuance records until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        removed = await store.sweep()
        if removed:
            logger.debug(f"Store sweep removed {removed} expired records")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup: report configuration problems and start the store sweep task.
    Shutdown: stop the sweep task and close the shared HTTP client.
    """
    context: AppContext = app.state.context
    settings = context.settings

    report = validate_configuration(settings)
    for error in report["errors"]:
        logger.error(f"Configuration error: {error}")
    for warning in report["warnings"]:
        logger.warning(f"Configuration warning: {warning}")

    sweep_task = asyncio.create_task(
        sweep_expired_records(context.store, settings.STORE_SWEEP_INTERVAL_SECONDS)
    )

    logger.info(
        "VID issuing tool started",
        extra={
            "service": SERVICE_NAME,
            "version": VERSION,
            "environment": settings.ENVIRONMENT,
            "base_url": settings.BASE_URL,
            "require_auth": settings.REQUIRE_AUTH,
        }
    )

    yield

    logger.info("Shutting down VID issuing tool")

    sweep_task.cancel()
    try:
        await sweep_task
    except asyncio.CancelledError:
        pass

    await context.aclose()
    logger.info("Shutdown complete")


def create_app(
    settings: Optional[Settings] = None,
    context: Optional[AppContext] = None,
) -> FastAPI:
    """
    Application factory function.

    Args:
        settings: Settings to use (defaults to get_settings(), or the
            context's settings when a context is given)
        context: Prebuilt application context, mainly for tests

    Returns:
        FastAPI: Configured application instance
    """
    if context is not None:
        settings = context.settings
    else:
        settings = settings or get_settings()

    log_buffer = context.log_buffer if context is not None else LogBuffer(
        max_entries=settings.LOG_BUFFER_MAX_ENTRIES,
        ttl_seconds=settings.LOG_BUFFER_TTL_SECONDS,
    )
    setup_logging(settings.LOG_LEVEL, log_buffer)

    if context is None:
        context = AppContext.build(settings, log_buffer=log_buffer)

    app = FastAPI(
        title="VID Issuing Tool",
        description="Issue Microsoft Entra Verified ID credentials to directory users",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.context = context

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    # Holds OIDC state, nonce and PKCE verifier between /auth/login and /auth/callback
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SESSION_SECRET,
        session_cookie="vid_oidc",
        same_site="lax",
        https_only=settings.SESSION_COOKIE_SECURE,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        session_id = session_id_from_request(request, settings)
        response = await call_next(request)
        logger.info(
            f"{request.method} {request.url.path} {response.status_code}",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "session_id": session_id,
            }
        )
        return response

    app.include_router(auth_router)
    app.include_router(credentials_router, prefix="/api/credentials", tags=["Credentials"])
    app.include_router(users_router, prefix="/api/users", tags=["Users"])
    app.include_router(admin_router, prefix="/api/admin", tags=["Admin"])

    @app.get("/health", tags=["System"])
    async def health_check() -> Dict[str, Any]:
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "version": VERSION,
            "configured": settings.has_service_credentials,
        }

    @app.get("/", tags=["System"])
    async def root() -> Dict[str, Any]:
        """Service metadata and available endpoints."""
        return {
            "service": SERVICE_NAME,
            "version": VERSION,
            "description": "Issue Microsoft Entra Verified ID credentials to directory users",
            "endpoints": {
                "health": "/health",
                "docs": "/docs",
                "auth": "/auth",
                "credentials": "/api/credentials",
                "users": "/api/users",
                "admin": "/api/admin",
            }
        }

    @app.exception_handler(VidToolError)
    async def vidtool_exception_handler(request: Request, exc: VidToolError) -> JSONResponse:
        logger.warning(
            f"{type(exc).__name__}: {exc.message}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": exc.status_code,
            }
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Log unhandled errors and return a generic 500."""
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "detail": str(exc) if settings.is_development else None
            }
        )

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "vidtool.app.main:app",
        host="0.0.0.0",
        port=3000,
        reload=True,
        log_level=get_settings().LOG_LEVEL.lower()
    )
