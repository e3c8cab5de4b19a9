"""Liveness and readiness probes."""
import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from order_engine.database import get_session

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """Process is up; includes the anomaly scanner state when the lifespan has run"""
    scan_scheduler = getattr(request.app.state, "anomaly_scheduler", None)
    return {
        "status": "healthy",
        "service": "Order Consistency Engine",
        "anomaly_scan": scan_scheduler.state.value if scan_scheduler else None,
    }


@router.get("/health/db")
async def database_health():
    """Database reachable; 503 otherwise"""
    try:
        async with get_session() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "error", "error": str(e)},
        )
    return {"status": "healthy", "database": "connected"}
