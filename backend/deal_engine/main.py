"""Deal Engine: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager

# configure_structlog must run before the other package imports: structlog
# caches the processor chain on first use.
from deal_engine.core.logging import configure_structlog
from deal_engine.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from deal_engine.api.routes import api_router
from deal_engine.core.config import get_settings
from deal_engine.core.exceptions import (
    AllocationValidationError,
    AlreadyFinalizedError,
    DealEngineError,
    DealLockedError,
    IllegalTransitionError,
    NoPendingAllocationsError,
    NotFoundError,
    UnclaimableAllocationError,
)
from deal_engine.db import close_db, close_redis, init_db, init_redis
from deal_engine.middleware.correlation import get_correlation_id, setup_correlation_middleware

logger = structlog.get_logger(__name__)

# Domain error -> (HTTP status, machine-readable code)
ERROR_STATUS: dict[type[DealEngineError], tuple[int, str]] = {
    NotFoundError: (404, "NOT_FOUND"),
    AllocationValidationError: (422, "INVALID_ALLOCATION_CONFIG"),
    IllegalTransitionError: (409, "ILLEGAL_TRANSITION"),
    AlreadyFinalizedError: (409, "ALREADY_FINALIZED"),
    NoPendingAllocationsError: (409, "NO_PENDING_ALLOCATIONS"),
    UnclaimableAllocationError: (409, "UNCLAIMABLE_ALLOCATION"),
    DealLockedError: (423, "DEAL_LOCKED"),
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # SIGTERM flips this so the health check returns 503 while draining
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    await init_db()
    logger.info("db_initialized")

    await init_redis()
    logger.info("redis_initialized")

    yield

    logger.info("shutdown_begin")
    await close_redis()
    await close_db()
    logger.info("shutdown_complete")


async def domain_exception_handler(request: Request, exc: DealEngineError) -> JSONResponse:
    """Map engine errors to HTTP responses with a stable error code and debug_id."""
    status_code, code = 500, "INTERNAL_ERROR"
    for exc_type in type(exc).__mro__:
        if exc_type in ERROR_STATUS:
            status_code, code = ERROR_STATUS[exc_type]
            break

    debug_id = str(uuid.uuid4())
    logger.warning(
        "domain_error",
        status_code=status_code,
        code=code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        detail=str(exc),
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "code": code, "debug_id": debug_id},
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Global exception handler for HTTPException with debug_id tracking."""
    debug_id = str(uuid.uuid4())

    logger.error(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        detail=exc.detail,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors with debug_id tracking.

    Logs full exception with traceback, returns generic 500 to client.
    """
    debug_id = str(uuid.uuid4())

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Token sale allocation, lifecycle and settlement engine",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url, "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    app.exception_handler(DealEngineError)(domain_exception_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "deal_engine.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
