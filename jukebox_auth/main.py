"""
FastAPI Application Factory
===========================

Entry point for the jukebox authentication service. It sits between a
browser front end and Spotify: it runs the authorization code flow, issues
the front end its own session JWT, and keeps every user's Spotify tokens
fresh in the background.

Routers:
    - /auth/*       : Login parameters, callback, session check, logout
    - /health       : Health check endpoint

Every route outside /auth/login, /auth/callback, /health and the API docs
requires a valid session JWT (cookie or Bearer header).

Running the Service:
    Development:
        uvicorn jukebox_auth.main:app --reload --host 0.0.0.0 --port 8080

    Production:
        uvicorn jukebox_auth.main:app --host 0.0.0.0 --port 8080

    With custom log level:
        LOG_LEVEL=DEBUG uvicorn jukebox_auth.main:app --reload

The refresh scheduler runs inside the process, so run a single worker per
token store.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jukebox_auth import __version__
from jukebox_auth.auth.middleware import RequestAuthenticator
from jukebox_auth.auth.routes import auth_router
from jukebox_auth.auth.session import SessionSigner
from jukebox_auth.config import Settings, get_settings, validate_configuration
from jukebox_auth.logging_config import setup_logging
from jukebox_auth.models import ErrorResponse, HealthResponse
from jukebox_auth.provider.client import SpotifyClient
from jukebox_auth.storage import (
    SQLUserStore,
    VaultUserStore,
    create_db_and_tables,
    create_engine,
    create_session_factory,
)
from jukebox_auth.tokens.reconciler import SessionReconciler
from jukebox_auth.tokens.scheduler import TokenRefreshScheduler

SERVICE_NAME = "jukebox-auth"

logger = logging.getLogger(__name__)


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Configure logging and validate configuration
        - Open the shared HTTP client used for Spotify (and Vault)
        - Open the user store and create its tables
        - Build the reconciler and start the refresh scheduler

    Shutdown tasks, in reverse:
        - Stop the refresh scheduler
        - Dispose of the database engine
        - Close the HTTP client
    """
    settings: Settings = app.state.settings

    setup_logging(settings.LOG_LEVEL)

    report = validate_configuration(settings)
    for warning in report["warnings"]:
        logger.warning(f"Configuration warning: {warning}")
    if not report["valid"]:
        for error in report["errors"]:
            logger.error(f"Configuration error: {error}")
        raise RuntimeError("Invalid configuration: " + "; ".join(report["errors"]))

    logger.info(
        "Starting jukebox auth service",
        extra={
            "store_backend": settings.USER_STORE_BACKEND,
            "jwt_algorithm": settings.jwt_algorithm,
            "log_level": settings.LOG_LEVEL,
        },
    )

    http_client = httpx.AsyncClient(
        timeout=settings.PROVIDER_HTTP_TIMEOUT_SECONDS,
        transport=app.state.http_transport,
    )
    provider = SpotifyClient.from_settings(http_client, settings)

    engine = None
    if settings.USER_STORE_BACKEND == "vault":
        store = VaultUserStore.from_settings(http_client, settings)
        if not await store.is_healthy():
            logger.warning("Vault health check failed at startup")
    else:
        engine = create_engine(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)
        await create_db_and_tables(engine)
        store = SQLUserStore(create_session_factory(engine))

    reconciler = SessionReconciler(
        provider=provider,
        store=store,
        signer=app.state.signer,
        redirect_uri=settings.FRONTEND_REDIRECT_URI,
    )
    scheduler = TokenRefreshScheduler(
        provider=provider,
        store=store,
        interval=settings.refresh_interval,
        window=settings.refresh_window,
    )

    app.state.http_client = http_client
    app.state.provider = provider
    app.state.store = store
    app.state.reconciler = reconciler
    app.state.scheduler = scheduler

    if settings.REFRESH_SCHEDULER_ENABLED:
        await scheduler.start()
    else:
        logger.info("Token refresh scheduler disabled")

    logger.info("Jukebox auth service started", extra={"version": __version__})

    yield

    # Shutdown
    logger.info("Shutting down jukebox auth service")

    await scheduler.stop()

    if engine is not None:
        await engine.dispose()
        logger.info("Disposed database engine")

    await http_client.aclose()

    logger.info("Jukebox auth service shutdown complete")


# Create FastAPI application
def create_app(
    settings: Optional[Settings] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Application factory function.

    Args:
        settings: Settings to run with; loaded from the environment when omitted
        http_transport: Transport for the outbound HTTP client (tests pass
            an ``httpx.MockTransport``)

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Jukebox Auth Service",
        description="Spotify login, session JWTs and background token refresh",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url=None,
    )

    signer = SessionSigner.from_settings(settings)
    app.state.settings = settings
    app.state.signer = signer
    app.state.http_transport = http_transport

    # Authenticator first so CORS wraps it and 401s still carry CORS headers
    app.middleware("http")(RequestAuthenticator(signer, cookie_name=settings.SESSION_COOKIE_NAME))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)

    # Health check endpoint
    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check(request: Request) -> HealthResponse:
        """
        Liveness check with the state of the refresh scheduler.
        """
        scheduler = getattr(request.app.state, "scheduler", None)
        return HealthResponse(
            status="ok",
            service=SERVICE_NAME,
            dependencies={
                "store": settings.USER_STORE_BACKEND,
                "scheduler": "running" if scheduler is not None and scheduler.running else "stopped",
            },
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Log unhandled errors and return a generic error body.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
            exc_info=True,
        )

        body = ErrorResponse(
            error="internal_server_error",
            message="An unexpected error occurred",
        )
        return JSONResponse(status_code=500, content=body.model_dump(mode="json"))

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "jukebox_auth.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
