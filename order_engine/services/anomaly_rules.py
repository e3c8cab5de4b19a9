"""
Order frequency anomaly rules.

Both rules are pure functions of a product, its recent order history
(most-recent-first) and the evaluation instant; they are evaluated
independently so one product can yield zero, one or two findings per scan.

- too rare: the product has not been ordered for longer than
  ``rare_order_days`` (measured from product creation when it never was)
- too frequent: more than one order fell inside the last
  ``frequent_order_days``
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Union

from order_engine.core.enums import AnomalyKind
from order_engine.core.utils import as_utc, days_between_ceil
from order_engine.services.readers import OrderHistoryEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TooRareFinding:
    product_id: int
    product_name: str
    supplier: Optional[str]
    unit: Optional[str]
    store_name: str
    last_order_date: Optional[date]
    last_order_quantity: int
    anomaly_days: int
    threshold_days: int
    kind: AnomalyKind = AnomalyKind.TOO_RARE

    @property
    def message(self) -> str:
        if self.last_order_date is None:
            return (
                f"{self.product_name} has never been ordered; "
                f"{self.anomaly_days} days exceeds the {self.threshold_days} day limit"
            )
        return (
            f"{self.store_name} {self.product_name}: last ordered {self.last_order_date.isoformat()} "
            f"({self.last_order_quantity}{self.unit or ''}), {self.anomaly_days} days without an order"
        )

    def as_details(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "supplier": self.supplier,
            "store_name": self.store_name,
            "last_order_date": self.last_order_date.isoformat() if self.last_order_date else None,
            "last_order_quantity": self.last_order_quantity,
            "anomaly_days": self.anomaly_days,
            "threshold_days": self.threshold_days,
            "message": self.message,
        }


@dataclass(frozen=True)
class TooFrequentFinding:
    product_id: int
    product_name: str
    supplier: Optional[str]
    unit: Optional[str]
    store_name: str
    recent_orders_count: int
    total_quantity: int
    period_days: int
    avg_days_between: float
    last_order_date: Optional[date]
    kind: AnomalyKind = AnomalyKind.TOO_FREQUENT

    @property
    def message(self) -> str:
        return (
            f"{self.store_name} {self.product_name}: {self.recent_orders_count} orders in the last "
            f"{self.period_days} day(s), {self.total_quantity}{self.unit or ''} in total"
        )

    def as_details(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "supplier": self.supplier,
            "store_name": self.store_name,
            "recent_orders_count": self.recent_orders_count,
            "total_quantity": self.total_quantity,
            "period_days": self.period_days,
            "avg_days_between": self.avg_days_between,
            "last_order_date": self.last_order_date.isoformat() if self.last_order_date else None,
            "message": self.message,
        }


AnomalyFinding = Union[TooRareFinding, TooFrequentFinding]


@dataclass
class ProductScanResult:
    """Outcome for one product: its findings, or the reason it was skipped."""
    product_id: int
    findings: List[AnomalyFinding] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def check_too_rare(
    product,
    recent_orders: Sequence[OrderHistoryEntry],
    now: datetime,
    all_stores_label: str = "All stores",
) -> Optional[TooRareFinding]:
    rare_days = product.rare_order_days or 0
    if rare_days <= 0:
        return None

    last_order = recent_orders[0] if recent_orders else None
    reference = last_order.requested_date if last_order else product.created_at
    if reference is None:
        return None

    # Exactly rare_days old is still on schedule
    if as_utc(now) - as_utc(reference) <= timedelta(days=rare_days):
        return None

    return TooRareFinding(
        product_id=product.id,
        product_name=product.name,
        supplier=product.supplier,
        unit=product.unit,
        store_name=(last_order.store_name if last_order and last_order.store_name else all_stores_label),
        last_order_date=as_utc(last_order.requested_date).date() if last_order else None,
        last_order_quantity=last_order.quantity if last_order else 0,
        anomaly_days=days_between_ceil(reference, now),
        threshold_days=rare_days,
    )


def check_too_frequent(
    product,
    recent_orders: Sequence[OrderHistoryEntry],
    now: datetime,
    all_stores_label: str = "All stores",
) -> Optional[TooFrequentFinding]:
    frequent_days = product.frequent_order_days or 0
    if frequent_days <= 0 or len(recent_orders) < 2:
        return None

    window_start = as_utc(now) - timedelta(days=frequent_days)
    qualifying = [order for order in recent_orders if as_utc(order.requested_date) >= window_start]
    if len(qualifying) <= 1:
        return None

    latest = qualifying[0]
    return TooFrequentFinding(
        product_id=product.id,
        product_name=product.name,
        supplier=product.supplier,
        unit=product.unit,
        store_name=latest.store_name or all_stores_label,
        recent_orders_count=len(qualifying),
        total_quantity=sum(order.quantity for order in qualifying),
        period_days=frequent_days,
        avg_days_between=round(frequent_days / len(qualifying), 1),
        last_order_date=as_utc(latest.requested_date).date(),
    )


def evaluate_product(
    product,
    recent_orders: Sequence[OrderHistoryEntry],
    now: datetime,
    all_stores_label: str = "All stores",
) -> ProductScanResult:
    """Run both rules for one product; an unexpected failure becomes ``error``."""
    result = ProductScanResult(product_id=product.id)
    try:
        for rule in (check_too_rare, check_too_frequent):
            finding = rule(product, recent_orders, now, all_stores_label)
            if finding is not None:
                result.findings.append(finding)
    except Exception as e:
        result.findings = []
        result.error = f"{type(e).__name__}: {e}"
    return result
