"""
Scheduled tasks for the order engine.

The anomaly scanner runs inside the FastAPI process on an APScheduler
AsyncIOScheduler. Every trigger (each cron schedule, the operator endpoint,
the CLI) goes through one AnomalyScanScheduler, whose Idle/Scanning state is
changed under an asyncio.Lock: a trigger that arrives mid-scan is answered
with "already running" instead of being queued.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Set

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from order_engine.core.config import get_settings
from order_engine.core.enums import ScanState
from order_engine.core.utils import utc_now
from order_engine.services.activity_logger import ActivityLogger
from order_engine.services.anomaly_scan import AnomalyScanService, ScanSummary

logger = logging.getLogger(__name__)

ALREADY_RUNNING = "already running"


def job_listener(event):
    """Listen to job events for logging"""
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception}")
    else:
        logger.info(f"Job {event.job_id} executed successfully at {datetime.now()}")


async def cleanup_anomaly_history_task(session_factory, retention_days: int) -> int:
    """Delete anomaly audit rows older than the retention window."""
    cutoff = utc_now() - timedelta(days=retention_days)
    try:
        async with session_factory() as db:
            deleted = await ActivityLogger(db).purge_anomaly_history(cutoff)
            await db.commit()
        logger.info(f"Cleanup completed: {deleted} anomaly audit rows older than {retention_days} days deleted")
        return deleted
    except Exception as e:
        logger.exception(f"Error in anomaly history cleanup task: {str(e)}")
        return 0


class AnomalyScanScheduler:
    def __init__(self, scan_service: AnomalyScanService, settings=None):
        self._scan_service = scan_service
        self._settings = settings or get_settings()
        self._lock = asyncio.Lock()
        self._state = ScanState.IDLE
        self._last_summary: Optional[ScanSummary] = None
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._background: Set[asyncio.Task] = set()

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def last_summary(self) -> Optional[ScanSummary]:
        return self._last_summary

    @property
    def scheduler(self) -> Optional[AsyncIOScheduler]:
        return self._scheduler

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------
    async def run_scan(self, trigger: str = "manual", actor: Optional[str] = None) -> ScanSummary:
        """Run one scan now, or report "already running" if one is in progress."""
        if not self._reserve():
            logger.info(f"Anomaly scan ({trigger}) requested while scanning; skipped")
            return ScanSummary(success=False, findings_count=0, error=ALREADY_RUNNING, trigger=trigger)
        return await self._run_reserved(trigger, actor)

    def trigger_in_background(self, actor: Optional[str] = None) -> bool:
        """Fire-and-forget scan. Returns False when a scan is already running or about to start."""
        if not self._reserve():
            return False
        task = asyncio.create_task(self._run_reserved("manual", actor))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return True

    def _reserve(self) -> bool:
        # No await between the check and the set, so this is an atomic check-and-set
        if self._state is ScanState.SCANNING or self._lock.locked():
            return False
        self._state = ScanState.SCANNING
        return True

    async def _run_reserved(self, trigger: str, actor: Optional[str]) -> ScanSummary:
        try:
            async with self._lock:
                summary = await self._scan_service.run_scan(trigger=trigger, actor=actor)
        finally:
            self._state = ScanState.IDLE

        self._last_summary = summary
        return summary

    async def _scheduled_scan(self, trigger: str) -> None:
        summary = await self.run_scan(trigger=trigger)
        if not summary.success and summary.error != ALREADY_RUNNING:
            logger.error(f"Scheduled anomaly scan ({trigger}) failed: {summary.error}")

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    def create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure the scheduler"""
        if self._scheduler is not None:
            return self._scheduler

        settings = self._settings
        scheduler = AsyncIOScheduler(timezone=settings.ANOMALY_SCAN_TIMEZONE)
        scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

        if settings.ANOMALY_SCAN_ENABLED:
            for index, expression in enumerate(settings.anomaly_scan_schedules):
                job_id = f"anomaly_scan_{index}"
                scheduler.add_job(
                    self._scheduled_scan,
                    CronTrigger.from_crontab(expression, timezone=settings.ANOMALY_SCAN_TIMEZONE),
                    args=[job_id],
                    id=job_id,
                    name=f"Anomaly scan ({expression})",
                    replace_existing=True,
                    max_instances=1,
                    coalesce=True,
                    misfire_grace_time=3600  # 1 hour grace time
                )
                logger.info(f"Anomaly scan job added with schedule: {expression}")

            scheduler.add_job(
                cleanup_anomaly_history_task,
                CronTrigger(hour=2, minute=0, timezone=settings.ANOMALY_SCAN_TIMEZONE),
                args=[self._scan_service.session_factory, settings.ANOMALY_LOG_RETENTION_DAYS],
                id="cleanup_anomaly_history",
                name="Cleanup anomaly history",
                replace_existing=True,
                max_instances=1
            )
            logger.info("Anomaly history cleanup job added for 2:00 AM daily")
        else:
            logger.info("Scheduled anomaly scans are disabled. Set ANOMALY_SCAN_ENABLED=true to enable")

        self._scheduler = scheduler
        return scheduler

    def start(self) -> None:
        scheduler = self.create_scheduler()
        if not scheduler.running:
            scheduler.start()
            logger.info("Scheduler started successfully")
            for job in scheduler.get_jobs():
                logger.info(f"  - {job.name}: {job.trigger}")

    async def shutdown(self) -> None:
        """Stop the timers and wait for in-flight background scans."""
        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped successfully")
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def pause(self) -> bool:
        if self._scheduler and self._scheduler.running:
            self._scheduler.pause()
            return True
        return False

    def resume(self) -> bool:
        if self._scheduler:
            self._scheduler.resume()
            return True
        return False

    def status(self) -> Dict[str, Any]:
        """Current state, last scan and configured jobs"""
        jobs_info = []
        if self._scheduler is not None:
            for job in self._scheduler.get_jobs():
                next_run = getattr(job, "next_run_time", None)
                jobs_info.append({
                    "id": job.id,
                    "name": job.name,
                    "next_run": next_run.isoformat() if next_run else None,
                    "trigger": str(job.trigger)
                })

        if self._scheduler is None:
            scheduler_status = "not_initialized"
        elif self._scheduler.running:
            scheduler_status = "running"
        else:
            scheduler_status = "stopped"

        return {
            "status": scheduler_status,
            "state": self._state.value,
            "last_scan": self._last_summary.as_dict() if self._last_summary else None,
            "jobs": jobs_info,
        }
