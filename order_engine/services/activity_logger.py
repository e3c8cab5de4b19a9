# order_engine/services/activity_logger.py
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.core.enums import ActivityAction
from order_engine.core.utils import utc_now
from order_engine.models.activity_log import ActivityLog

logger = logging.getLogger(__name__)


def build_activity(
    action: str,
    entity_type: str,
    entity_id: str,
    details: Optional[Dict[str, Any]] = None,
    actor: Optional[str] = None,
) -> ActivityLog:
    """Create an unsaved ActivityLog row."""
    return ActivityLog(
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),  # Convert to string for consistency
        details=details,
        actor=actor,
        created_at=datetime.now(timezone.utc),
    )


class ActivityLogger:
    """
    Service for recording audit rows outside the batch order transaction.

    Failures are logged and swallowed: an audit row that cannot be written
    must not abort an anomaly scan.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log_activity(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        details: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None,
    ) -> Optional[ActivityLog]:
        """
        Log an activity in the system.

        Args:
            action: The action performed (see ActivityAction)
            entity_type: The type of entity affected (product, batch, system)
            entity_id: The ID of the affected entity
            details: Optional additional details as a JSON-serialisable dict
            actor: Optional username of whoever triggered the action

        Returns:
            The created ActivityLog instance, or None if it could not be written
        """
        try:
            log_entry = build_activity(action, entity_type, entity_id, details, actor)
            self.db.add(log_entry)
            await self.db.flush()  # Get the ID without committing transaction

            logger.debug(f"Activity logged: {action} {entity_type} {entity_id}")
            return log_entry

        except Exception as e:
            logger.error(f"Error logging activity {action} for {entity_type} {entity_id}: {str(e)}")
            return None

    async def log_anomaly(self, finding, actor: Optional[str] = None) -> Optional[ActivityLog]:
        """One audit row per anomaly finding."""
        return await self.log_activity(
            action=ActivityAction.ORDER_ANOMALY_ALERT.value,
            entity_type="product",
            entity_id=str(finding.product_id),
            details=finding.as_details(),
            actor=actor,
        )

    async def log_scan(self, summary, actor: Optional[str] = None) -> Optional[ActivityLog]:
        """One audit row per scan, scheduled or manual."""
        return await self.log_activity(
            action=ActivityAction.SCHEDULED_ANOMALY_CHECK.value,
            entity_type="system",
            entity_id=summary.trigger,
            details={
                "check_type": summary.trigger,
                "success": summary.success,
                "anomalies_found": summary.findings_count,
                "products_checked": summary.products_checked,
                "products_failed": summary.products_failed,
                "duration_seconds": summary.duration_seconds,
                "checked_at": utc_now().isoformat(),
                "error": summary.error,
            },
            actor=actor,
        )

    async def purge_anomaly_history(self, older_than: datetime) -> int:
        """Delete anomaly audit rows older than ``older_than``; returns the row count."""
        result = await self.db.execute(
            delete(ActivityLog).where(
                ActivityLog.action.in_([
                    ActivityAction.ORDER_ANOMALY_ALERT.value,
                    ActivityAction.SCHEDULED_ANOMALY_CHECK.value,
                ]),
                ActivityLog.created_at < older_than,
            )
        )
        return result.rowcount or 0
