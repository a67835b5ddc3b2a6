"""FastAPI application entry point for the impact monitoring service.

Routers: /api/v1/impact/metrics, /api/v1/impact/goals.
Errors from src.errors are mapped to status codes here and nowhere else.
"""

import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.api.dependencies import (
    CORRELATION_HEADER,
    get_correlation_id,
    get_notarization_dispatcher,
)
from src.api.goals import router as goals_router
from src.api.metrics import router as metrics_router
from src.config.settings import Settings, get_settings
from src.errors import (
    ConflictError,
    ImpactMonitoringError,
    NotFoundError,
    StorageError,
    ValidationError,
)

APP_VERSION = "0.1.0"

settings = get_settings()

_LOG_NAME_TO_LEVEL: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def configure_logging(settings: Settings) -> None:
    """Structured logging: console renderer in dev, JSON lines elsewhere."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if settings.ENVIRONMENT == "dev"
            else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            _LOG_NAME_TO_LEVEL[settings.LOG_LEVEL.value],
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=_LOG_NAME_TO_LEVEL[settings.LOG_LEVEL.value])


configure_logging(settings)

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let in-flight notarizations finish before the loop goes away.
    await get_notarization_dispatcher().drain()


# --- FastAPI app ---
app = FastAPI(
    title="Impact Monitoring API",
    description="Green bond impact metrics, data quality and goal tracking.",
    version=APP_VERSION,
    lifespan=lifespan,
)

# --- CORS middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.ENVIRONMENT == "dev" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    """Resolve the request's correlation id once and echo it back."""
    correlation_id = get_correlation_id(request)
    response = await call_next(request)
    response.headers[CORRELATION_HEADER] = correlation_id
    return response


# --- Error mapping ---

_STATUS_BY_ERROR: list[tuple[type[ImpactMonitoringError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (StorageError, 503),
]


@app.exception_handler(ImpactMonitoringError)
async def impact_error_handler(request: Request, exc: ImpactMonitoringError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500,
    )
    correlation_id = get_correlation_id(request)
    log = logger.bind(correlation_id=correlation_id, path=request.url.path)
    if status_code >= 500:
        log.error("request_failed", error_code=exc.code, error=exc.message)
    else:
        log.info("request_rejected", error_code=exc.code, error=exc.message)
    headers = {CORRELATION_HEADER: correlation_id}
    if isinstance(exc, StorageError) and exc.retryable:
        headers["Retry-After"] = "5"
    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.code,
            "message": exc.message,
            "correlation_id": correlation_id,
        },
        headers=headers,
    )


# --- Routers ---
app.include_router(metrics_router)
app.include_router(goals_router)


# --- Infrastructure Endpoints (global) ---


@app.get("/health")
async def health_check() -> dict:
    """Liveness probe with component health checks.

    Returns 200 always (degraded status if components are down).
    """
    checks: dict[str, bool] = {"api": True}

    # Database connectivity check
    try:
        from src.db.session import async_session_factory
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception:
        checks["database"] = False

    all_ok = all(checks.values())

    return {
        "status": "ok" if all_ok else "degraded",
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT.value,
        "checks": checks,
    }


@app.get("/api/version")
async def get_version() -> dict[str, str]:
    """Return application name, version, and environment."""
    return {
        "name": "Impact Monitoring",
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT.value,
    }
