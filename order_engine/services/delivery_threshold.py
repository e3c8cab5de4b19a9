"""
Purpose: Supplier grouping and delivery threshold validation for batch orders.

A batch is split by supplier and each supplier group must reach that supplier's
minimum delivery amount. Every group is classified, passed ones included, so a
rejected caller sees the complete picture. Nothing in this module writes.

Stock sufficiency is checked here too, per product and cumulatively when the
same product appears on several lines, before the threshold result is treated
as conclusive.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.core.config import get_settings
from order_engine.core.exceptions import (
    DeliveryThresholdError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from order_engine.core.utils import money, to_decimal
from order_engine.models.product import Product
from order_engine.schemas.order import OrderLineRequest
from order_engine.services.readers import CatalogReader

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedLine:
    """A requested line joined with the product snapshot taken at validation time."""
    product_id: int
    name: str
    supplier: Optional[str]
    unit: Optional[str]
    unit_cost: Decimal
    quantity: int
    current_stock: int
    delivery_threshold: Optional[Decimal]

    @property
    def line_total(self) -> Decimal:
        return money(self.unit_cost * self.quantity)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit": self.unit,
            "unit_cost": self.unit_cost,
            "line_total": self.line_total,
        }


@dataclass
class SupplierGroup:
    supplier: str
    threshold: Decimal
    items: List[ResolvedLine] = field(default_factory=list)

    @property
    def subtotal(self) -> Decimal:
        return money(sum((item.line_total for item in self.items), Decimal("0")))

    @property
    def satisfied(self) -> bool:
        return self.subtotal >= self.threshold

    @property
    def shortfall(self) -> Decimal:
        return max(Decimal("0.00"), money(self.threshold - self.subtotal))

    @property
    def surplus(self) -> Decimal:
        return max(Decimal("0.00"), money(self.subtotal - self.threshold))

    def as_dict(self) -> Dict[str, Any]:
        return {
            "supplier": self.supplier,
            "subtotal": self.subtotal,
            "threshold": self.threshold,
            "satisfied": self.satisfied,
            "surplus": self.surplus,
            "shortfall": self.shortfall,
            "items": [item.as_dict() for item in self.items],
        }


@dataclass
class ThresholdReport:
    """Classification of every supplier group of one batch."""
    groups: List[SupplierGroup]

    @property
    def passed(self) -> List[SupplierGroup]:
        return [group for group in self.groups if group.satisfied]

    @property
    def failed(self) -> List[SupplierGroup]:
        return [group for group in self.groups if not group.satisfied]

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def lines(self) -> List[ResolvedLine]:
        return [item for group in self.groups for item in group.items]

    @property
    def total_amount(self) -> Decimal:
        return money(sum((group.subtotal for group in self.groups), Decimal("0")))

    def as_detail(self) -> Dict[str, Any]:
        return {
            "failed_suppliers": [group.as_dict() for group in self.failed],
            "successful_suppliers": [group.as_dict() for group in self.passed],
            "summary": {
                "total_suppliers": len(self.groups),
                "failed_count": len(self.failed),
                "successful_count": len(self.passed),
            },
            "suggestions": [
                {
                    "supplier": group.supplier,
                    "top_up_amount": group.shortfall,
                    "suggestion": f"Add at least {group.shortfall} to reach the delivery threshold",
                }
                for group in self.failed
            ],
        }


def check_request(lines: Sequence[OrderLineRequest]) -> None:
    """Reject malformed input before any store access."""
    if not lines:
        raise ValidationError("A batch order needs at least one line item")
    for index, line in enumerate(lines):
        if line.product_id is None or line.product_id <= 0:
            raise ValidationError(
                f"Line {index + 1} has an invalid product id",
                {"line": index + 1, "product_id": line.product_id},
            )
        if line.quantity is None or line.quantity <= 0:
            raise ValidationError(
                f"Line {index + 1} quantity must be greater than zero",
                {"line": index + 1, "product_id": line.product_id, "quantity": line.quantity},
            )


def resolve_lines(
    lines: Sequence[OrderLineRequest],
    products: Dict[int, Product],
) -> List[ResolvedLine]:
    """Join each request line with its product; unknown/inactive products raise NotFoundError."""
    resolved = []
    for line in lines:
        product = products.get(line.product_id)
        if product is None or not product.is_active:
            raise NotFoundError(line.product_id)
        resolved.append(
            ResolvedLine(
                product_id=product.id,
                name=product.name,
                supplier=product.supplier,
                unit=product.unit,
                unit_cost=to_decimal(product.unit_cost),
                quantity=line.quantity,
                current_stock=product.current_stock or 0,
                delivery_threshold=(
                    to_decimal(product.delivery_threshold)
                    if product.delivery_threshold is not None else None
                ),
            )
        )
    return resolved


def check_stock(resolved: Sequence[ResolvedLine]) -> None:
    """Raise InsufficientStockError for the first product whose total request exceeds its stock."""
    requested: Dict[int, int] = OrderedDict()
    by_product: Dict[int, ResolvedLine] = {}
    for line in resolved:
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity
        by_product.setdefault(line.product_id, line)

    for product_id, quantity in requested.items():
        line = by_product[product_id]
        if line.current_stock < quantity:
            raise InsufficientStockError(product_id, line.name, line.current_stock, quantity)


def group_by_supplier(
    resolved: Sequence[ResolvedLine],
    default_threshold: Decimal,
    unassigned_label: str,
) -> List[SupplierGroup]:
    """
    Partition lines by supplier, preserving first-seen order.

    Lines without a supplier share the ``unassigned_label`` group so they are
    still checked. The group threshold comes from the first line of the group.
    """
    groups: Dict[str, SupplierGroup] = OrderedDict()
    for line in resolved:
        key = line.supplier or unassigned_label
        threshold = line.delivery_threshold if line.delivery_threshold is not None else default_threshold
        group = groups.get(key)
        if group is None:
            group = groups[key] = SupplierGroup(supplier=key, threshold=money(threshold))
        elif money(threshold) != group.threshold:
            logger.warning(
                "Supplier %s has inconsistent delivery thresholds (%s vs %s on product %s); using %s",
                key, group.threshold, threshold, line.product_id, group.threshold,
            )
        group.items.append(line)
    return list(groups.values())


def evaluate_thresholds(groups: Sequence[SupplierGroup]) -> ThresholdReport:
    return ThresholdReport(groups=list(groups))


class DeliveryThresholdValidator:
    """Loads the catalog snapshot for a batch and runs every pre-write check."""

    def __init__(self, db: AsyncSession, settings=None):
        self.db = db
        self.settings = settings or get_settings()
        self.catalog = CatalogReader(db)

    async def _classify(self, lines: Sequence[OrderLineRequest]) -> ThresholdReport:
        check_request(lines)
        products = await self.catalog.get_active_products(line.product_id for line in lines)
        resolved = resolve_lines(lines, products)
        check_stock(resolved)
        groups = group_by_supplier(
            resolved,
            default_threshold=to_decimal(self.settings.DEFAULT_DELIVERY_THRESHOLD),
            unassigned_label=self.settings.UNASSIGNED_SUPPLIER_LABEL,
        )
        return evaluate_thresholds(groups)

    async def validate(self, lines: Sequence[OrderLineRequest]) -> ThresholdReport:
        """
        Run every pre-write check.

        Raises:
            ValidationError, NotFoundError, InsufficientStockError, DeliveryThresholdError
        """
        report = await self._classify(lines)
        if not report.ok:
            logger.info(
                "Batch rejected: %d of %d supplier group(s) below threshold",
                len(report.failed), len(report.groups),
            )
            raise DeliveryThresholdError(report)
        return report

    async def dry_run(self, lines: Sequence[OrderLineRequest]) -> ThresholdReport:
        """Same checks as ``validate`` but a short group is reported, not raised."""
        return await self._classify(lines)
