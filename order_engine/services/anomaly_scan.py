"""
Anomaly scan driver.

One scan loads every monitored product, evaluates the frequency rules against
its recent order history, groups the findings by (store, kind), sends one
notification per group and writes one audit row per finding.

A product that cannot be loaded or evaluated is logged and skipped; a group
whose notification fails is logged and not retried (the next scheduled scan
covers it). Only a failure of the scan as a whole turns the summary into
``success=False``.
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from order_engine.core.config import get_settings
from order_engine.core.exceptions import AnomalyScanError, NotificationError
from order_engine.core.utils import utc_now
from order_engine.schemas.notifications import (
    AnomalyDigest,
    ScanErrorNotice,
    TooFrequentAlert,
    TooRareAlert,
)
from order_engine.services.activity_logger import ActivityLogger
from order_engine.services.anomaly_rules import (
    AnomalyFinding,
    ProductScanResult,
    TooFrequentFinding,
    TooRareFinding,
    evaluate_product,
)
from order_engine.services.notification_service import NotificationService
from order_engine.services.readers import CatalogReader, OrderHistoryReader

logger = logging.getLogger(__name__)


@dataclass
class ScanSummary:
    success: bool
    findings_count: int
    error: Optional[str] = None
    trigger: str = "manual"
    products_checked: int = 0
    products_failed: int = 0
    notifications_sent: int = 0
    duration_seconds: float = 0.0
    started_at: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "findings_count": self.findings_count,
            "error": self.error,
            "trigger": self.trigger,
            "products_checked": self.products_checked,
            "products_failed": self.products_failed,
            "notifications_sent": self.notifications_sent,
            "duration_seconds": self.duration_seconds,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }


def to_alert(finding: AnomalyFinding):
    """Map a finding onto its notifier payload."""
    if isinstance(finding, TooRareFinding):
        return TooRareAlert(
            product_id=finding.product_id,
            product_name=finding.product_name,
            supplier=finding.supplier,
            store_name=finding.store_name,
            frequency_days=finding.anomaly_days,
            normal_frequency_days=finding.threshold_days,
            last_purchase_date=finding.last_order_date,
            recent_purchases=0,
            total_quantity=finding.last_order_quantity,
            recommendation=(
                f"{finding.product_name} has not been ordered for {finding.anomaly_days} days; "
                f"arrange a delivery soon"
            ),
            supplier_contact=finding.supplier,
        )
    if isinstance(finding, TooFrequentFinding):
        return TooFrequentAlert(
            product_id=finding.product_id,
            product_name=finding.product_name,
            supplier=finding.supplier,
            store_name=finding.store_name,
            frequency_days=finding.avg_days_between,
            normal_frequency_days=finding.period_days,
            last_purchase_date=finding.last_order_date,
            recent_purchases=finding.recent_orders_count,
            total_quantity=finding.total_quantity,
            recommendation=(
                f"{finding.product_name} was ordered {finding.recent_orders_count} times in "
                f"{finding.period_days} day(s); check whether every order was needed"
            ),
            supplier_contact=finding.supplier,
        )
    raise TypeError(f"Unknown finding type: {type(finding).__name__}")


def group_findings(findings: Sequence[AnomalyFinding]) -> "OrderedDict[Tuple[str, str], List[AnomalyFinding]]":
    grouped: "OrderedDict[Tuple[str, str], List[AnomalyFinding]]" = OrderedDict()
    for finding in findings:
        grouped.setdefault((finding.store_name, finding.kind.value), []).append(finding)
    return grouped


class AnomalyScanService:
    def __init__(
        self,
        session_factory: Callable,
        notifier: NotificationService,
        settings=None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.clock = clock

    async def run_scan(self, trigger: str = "manual", actor: Optional[str] = None) -> ScanSummary:
        started_at = self.clock()
        started = time.monotonic()
        logger.info(f"Starting {trigger} anomaly scan")

        try:
            async with self.session_factory() as db:
                products = await CatalogReader(db).get_monitored_products()

            results = [await self._scan_product(product, started_at) for product in products]
            findings = [finding for result in results for finding in result.findings]
            failed = [result for result in results if not result.ok]

            sent = await self._notify(findings, started_at)

            async with self.session_factory() as db:
                audit = ActivityLogger(db)
                for finding in findings:
                    await audit.log_anomaly(finding, actor)

                summary = ScanSummary(
                    success=True,
                    findings_count=len(findings),
                    trigger=trigger,
                    products_checked=len(products),
                    products_failed=len(failed),
                    notifications_sent=sent,
                    duration_seconds=round(time.monotonic() - started, 3),
                    started_at=started_at,
                )
                await audit.log_scan(summary, actor)
                await db.commit()

        except Exception as e:
            logger.exception(f"Anomaly scan ({trigger}) failed: {str(e)}")
            summary = ScanSummary(
                success=False,
                findings_count=0,
                error=str(e),
                trigger=trigger,
                duration_seconds=round(time.monotonic() - started, 3),
                started_at=started_at,
            )
            await self.notifier.dispatch_quietly(ScanErrorNotice(error=str(e), occurred_at=self.clock()))
            return summary

        logger.info(
            f"Anomaly scan ({trigger}) finished: {summary.findings_count} finding(s) across "
            f"{summary.products_checked} product(s), {summary.products_failed} skipped, "
            f"{summary.duration_seconds:.2f}s"
        )
        return summary

    async def _scan_product(self, product, now: datetime) -> ProductScanResult:
        try:
            # One short session per product: a failed read aborts only its own transaction
            async with self.session_factory() as db:
                history = OrderHistoryReader(db, window=self.settings.ANOMALY_HISTORY_WINDOW)
                recent = await history.recent_orders(product.id)
        except Exception as e:
            error = AnomalyScanError(product.id, f"could not load order history: {e}")
            logger.warning(f"Skipping product {product.id}: {error}")
            return ProductScanResult(product_id=product.id, error=str(error))

        result = evaluate_product(product, recent, now, self.settings.ALL_STORES_LABEL)
        if not result.ok:
            logger.warning(f"Skipping product {product.id}: {AnomalyScanError(product.id, result.error)}")
        return result

    async def _notify(self, findings: Sequence[AnomalyFinding], detected_at: datetime) -> int:
        sent = 0
        for (store_name, kind), group in group_findings(findings).items():
            digest = AnomalyDigest(
                store_name=store_name,
                kind=kind,
                alerts=[to_alert(finding) for finding in group],
                detected_at=detected_at,
            )
            try:
                if await self.notifier.dispatch(digest):
                    sent += 1
            except NotificationError as e:
                logger.error(f"Notification for {store_name}/{kind} failed, will retry next scan: {e}")
            except Exception as e:
                logger.exception(f"Unexpected notifier error for {store_name}/{kind}: {e}")
        return sent
