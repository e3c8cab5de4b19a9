"""
Anomaly scan management endpoints
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from order_engine.core.security import get_current_username
from order_engine.scheduler import AnomalyScanScheduler

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/anomaly-scan", tags=["anomaly-scan"])


def get_anomaly_scheduler(request: Request) -> AnomalyScanScheduler:
    return request.app.state.anomaly_scheduler


@router.post("/run")
async def run_anomaly_scan(
    current_user: str = Depends(get_current_username),
    scan_scheduler: AnomalyScanScheduler = Depends(get_anomaly_scheduler),
):
    """Run an anomaly scan now and report how many findings it produced"""
    logger.info(f"User {current_user} manually triggered an anomaly scan")
    summary = await scan_scheduler.run_scan(trigger="manual", actor=current_user)
    return {
        "success": summary.success,
        "findings_count": summary.findings_count,
        "error": summary.error,
    }


@router.get("/status", response_model=Dict[str, Any])
async def anomaly_scan_status(
    current_user: str = Depends(get_current_username),
    scan_scheduler: AnomalyScanScheduler = Depends(get_anomaly_scheduler),
):
    """Scanner state, last scan summary and configured jobs"""
    return scan_scheduler.status()


@router.post("/pause")
async def pause_scans(
    current_user: str = Depends(get_current_username),
    scan_scheduler: AnomalyScanScheduler = Depends(get_anomaly_scheduler),
):
    """Pause all scheduled scans"""
    if scan_scheduler.pause():
        logger.info(f"Anomaly scans paused by {current_user}")
        return {"status": "success", "message": "Scheduler paused"}
    return {"status": "warning", "message": "Scheduler not running"}


@router.post("/resume")
async def resume_scans(
    current_user: str = Depends(get_current_username),
    scan_scheduler: AnomalyScanScheduler = Depends(get_anomaly_scheduler),
):
    """Resume all scheduled scans"""
    if scan_scheduler.resume():
        logger.info(f"Anomaly scans resumed by {current_user}")
        return {"status": "success", "message": "Scheduler resumed"}
    return {"status": "warning", "message": "Scheduler not initialized"}
