import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from deal_engine.db.base import get_session_factory
from deal_engine.db.redis import get_redis

logger = structlog.get_logger(__name__)

router = APIRouter()

SERVICE_NAME = "deal-engine"


async def _check_database() -> bool:
    try:
        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("readiness_database_failed", error=str(e))
        return False
    return True


async def _check_deal_locks() -> bool:
    """Admin mutations cannot take a deal lock without Redis."""
    try:
        await get_redis().ping()
    except Exception as e:
        logger.error("readiness_redis_failed", error=str(e))
        return False
    return True


@router.get("/health")
async def health_check(request: Request):
    """Liveness probe. Returns 503 once shutdown has begun."""
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(status_code=503, content={"status": "shutting_down", "service": SERVICE_NAME})
    return {"status": "healthy", "service": SERVICE_NAME}


@router.get("/ready")
async def readiness_check():
    checks = {"database": await _check_database(), "deal_locks": await _check_deal_locks()}
    ready = all(checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "degraded", "checks": checks},
    )
