"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from flakeguard.api.routes import analytics, automation, policies, quarantine
from flakeguard.core.config import get_settings
from flakeguard.core.errors import (
    ConcurrentTransitionError,
    DataIntegrityError,
    FlakeguardError,
    NotFoundError,
    PolicyInUseError,
    PolicyMissingError,
    PolicyValidationError,
)
from flakeguard.core.logging import get_logger, setup_logging
from flakeguard.services.engine import build_engine
from flakeguard.storage.redis_client import close_redis_pool, get_redis, init_redis_pool

logger = get_logger(__name__)

ERROR_STATUS: dict[type[FlakeguardError], int] = {
    NotFoundError: 404,
    PolicyMissingError: 404,
    PolicyInUseError: 409,
    ConcurrentTransitionError: 409,
    PolicyValidationError: 422,
    DataIntegrityError: 422,
}


def error_status(exc: FlakeguardError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status
    return 400


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager."""
    settings = get_settings()

    # Startup
    setup_logging(role="api", settings=settings)
    logger.info("Starting application", app_name=settings.app_name, version=settings.app_version)

    await init_redis_pool()
    logger.info("Redis connection pool initialized")

    engine = build_engine(get_redis(), settings)
    app.state.engine = engine
    if settings.api_run_scheduler:
        engine.scheduler.start()

    yield

    # Shutdown
    logger.info("Shutting down application")
    await engine.scheduler.stop()
    await close_redis_pool()
    logger.info("Redis connection pool closed")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Quarantine decision engine for flaky CI tests",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(policies.router, prefix="/api/v1")
    app.include_router(quarantine.router, prefix="/api/v1")
    app.include_router(automation.router, prefix="/api/v1")
    app.include_router(analytics.router, prefix="/api/v1")

    # Error response handlers
    @app.exception_handler(FlakeguardError)
    async def flakeguard_exception_handler(request: Request, exc: FlakeguardError) -> JSONResponse:
        status = error_status(exc)
        logger.info(
            "Request rejected",
            path=request.url.path,
            status=status,
            error_type=type(exc).__name__,
            error=exc.message,
        )
        return JSONResponse(
            status_code=status,
            content={"code": status, "message": exc.message, "data": exc.details or None},
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        detail = exc.detail
        content = {
            "code": exc.status_code,
            "message": detail if isinstance(detail, str) else "HTTP error",
            "data": None if isinstance(detail, str) else detail,
        }
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "code": 422,
                "message": "Validation error",
                "data": jsonable_errors(exc),
            },
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )
        return JSONResponse(
            status_code=500,
            content={
                "code": 500,
                "message": "Internal server error",
                "data": str(exc) if settings.debug else None,
            },
        )

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus exposition of the engine metrics."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Health check endpoint
    @app.get("/health")
    async def health_check() -> dict:
        """Health check endpoint."""
        return {"status": "ok", "version": settings.app_version}

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Validation errors without the raw exception objects pydantic may attach."""
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        errors.append(error)
    return errors


# Application instance for uvicorn
app = create_app()
