"""
FastAPI application factory for the monitoring API.

Lifecycle errors raised by ``MonitoringService`` are mapped to HTTP status
codes here, so routes call the service directly:

- AlertNotFoundError -> 404
- InvalidStateTransition -> 409
- MonitoringNotActiveError -> 409
"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from fleetwatch import __version__
from fleetwatch.api.dependencies import cleanup_dependencies
from fleetwatch.api.routes import alerts, health, monitoring
from fleetwatch.monitoring.errors import (
    AlertNotFoundError,
    InvalidStateTransition,
    MonitoringNotActiveError,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Monitoring API starting up", version=__version__)
    yield
    logger.info("Monitoring API shutting down")
    await cleanup_dependencies()


def _error(status_code: int, detail: str, error_type: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "error_type": error_type},
    )


def create_app() -> FastAPI:
    """Build the app with routers, request logging and error mapping."""
    app = FastAPI(
        title="Fleetwatch Monitoring API",
        description="""
Real-time entity monitoring: metric snapshot ingestion, open alerts,
alert lifecycle (acknowledge / resolve / false positive) and monitoring
sessions.

## Authentication

Requires `X-API-KEY` header for all requests except `/health`.
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "health", "description": "Service health checks"},
            {"name": "alerts", "description": "Open alerts, summaries and lifecycle"},
            {"name": "monitoring", "description": "Monitoring sessions and ingestion"},
        ],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            return response
        finally:
            structlog.contextvars.clear_contextvars()

    # Starlette dispatches to the most specific exception class
    @app.exception_handler(AlertNotFoundError)
    async def alert_not_found(request: Request, exc: AlertNotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, str(exc), "not_found")

    @app.exception_handler(InvalidStateTransition)
    async def invalid_transition(request: Request, exc: InvalidStateTransition):
        logger.info(
            "Rejected lifecycle transition",
            alert_id=exc.alert_id,
            from_status=exc.from_status,
            to_status=exc.to_status,
        )
        return _error(status.HTTP_409_CONFLICT, str(exc), "invalid_transition")

    @app.exception_handler(MonitoringNotActiveError)
    async def monitoring_not_active(request: Request, exc: MonitoringNotActiveError):
        return _error(status.HTTP_409_CONFLICT, str(exc), "monitoring_not_active")

    @app.exception_handler(Exception)
    async def unhandled(request: Request, exc: Exception):
        logger.error("Unhandled exception", path=request.url.path, exc_info=exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", "internal")

    app.include_router(health.router, tags=["health"])
    app.include_router(alerts.router, tags=["alerts"])
    app.include_router(monitoring.router, tags=["monitoring"])

    @app.get("/", include_in_schema=False)
    async def root():
        return {"service": "Fleetwatch Monitoring API", "version": __version__, "docs": "/docs"}

    return app
