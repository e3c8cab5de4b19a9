"""
Purpose: Atomic batch order placement.

Role: Runs the delivery threshold validation and then, as one transaction,
decrements stock, appends the inventory transactions and creates the order rows
of a batch.

The write sequence is planned up front as an ordered list of write operations
and applied under the session's single transaction. Each stock decrement is a
conditional UPDATE (``current_stock >= quantity``), which re-checks stock at
write time: validation and mutation are not the same instant, and two batches
validated against the same stock must not both spend it. Any failure, a
timeout included, goes through the one rollback path and surfaces as a
TransactionError, so no partial batch is ever visible.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.core.config import get_settings
from order_engine.core.enums import ActivityAction, OrderStatus, OrderUrgency, TransactionType
from order_engine.core.exceptions import (
    InsufficientStockError,
    OrderServiceError,
    TransactionError,
    ValidationError,
)
from order_engine.core.utils import utc_now
from order_engine.models.inventory_transaction import InventoryTransaction
from order_engine.models.order import Order
from order_engine.models.product import Product
from order_engine.schemas.order import BatchOrderRequest
from order_engine.services.activity_logger import build_activity
from order_engine.services.delivery_threshold import (
    DeliveryThresholdValidator,
    ResolvedLine,
    ThresholdReport,
)

logger = logging.getLogger(__name__)

BATCH_ORDER_REASON = "batch order"


def generate_batch_number(now: Optional[datetime] = None) -> str:
    """
    ``ORD-YYYYMMDD-HHMMSS-XXXXXX``: sorts by submission time, readable, and
    unique per batch through the random suffix.
    """
    now = now or utc_now()
    return f"ORD-{now:%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:6].upper()}"


# ----------------------------------------------------------------------
# Write operations
# ----------------------------------------------------------------------
class WriteOperation:
    """One step of a batch's write plan."""

    async def apply(self, db: AsyncSession) -> Any:
        raise NotImplementedError


@dataclass(frozen=True)
class StockDecrement(WriteOperation):
    product_id: int
    product_name: str
    quantity: int

    async def apply(self, db: AsyncSession) -> None:
        result = await db.execute(
            update(Product)
            .where(Product.id == self.product_id, Product.current_stock >= self.quantity)
            .values(current_stock=Product.current_stock - self.quantity, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            available = await db.scalar(
                select(Product.current_stock).where(Product.id == self.product_id)
            )
            raise InsufficientStockError(self.product_id, self.product_name, available or 0, self.quantity)


@dataclass(frozen=True)
class AppendInventoryTransaction(WriteOperation):
    line: ResolvedLine
    batch_number: str
    actor: str
    store_id: Optional[int]

    async def apply(self, db: AsyncSession) -> InventoryTransaction:
        row = InventoryTransaction(
            uuid=str(uuid.uuid4()),
            product_id=self.line.product_id,
            transaction_type=TransactionType.OUTBOUND.value,
            quantity=self.line.quantity,
            reason=BATCH_ORDER_REASON,
            reference_no=self.batch_number,
            performed_by=self.actor,
            notes=f"Store {self.store_id}, supplier {self.line.supplier or 'n/a'}",
        )
        db.add(row)
        return row


@dataclass(frozen=True)
class AppendOrder(WriteOperation):
    line: ResolvedLine
    order_number: str
    batch_number: str
    actor: str
    store_id: Optional[int]
    placed_at: datetime
    delivery_date: Optional[datetime]
    notes: Optional[str]

    async def apply(self, db: AsyncSession) -> Order:
        order = Order(
            uuid=str(uuid.uuid4()),
            order_number=self.order_number,
            batch_number=self.batch_number,
            product_id=self.line.product_id,
            store_id=self.store_id,
            requested_quantity=self.line.quantity,
            approved_quantity=self.line.quantity,
            unit_cost=self.line.unit_cost,
            total_cost=self.line.line_total,
            status=OrderStatus.APPROVED.value,
            urgency=OrderUrgency.NORMAL.value,
            reason=BATCH_ORDER_REASON,
            supplier=self.line.supplier,
            notes=self.notes,
            requested_by=self.actor,
            approved_by=self.actor,
            requested_date=self.placed_at,
            approved_date=self.placed_at,
            delivery_date=self.delivery_date or self.placed_at,
        )
        db.add(order)
        return order


@dataclass(frozen=True)
class AppendAudit(WriteOperation):
    batch_number: str
    actor: str
    details: Dict[str, Any]

    async def apply(self, db: AsyncSession) -> None:
        db.add(build_activity(
            ActivityAction.BATCH_ORDER.value, "batch", self.batch_number, self.details, self.actor
        ))


# ----------------------------------------------------------------------
# Results
# ----------------------------------------------------------------------
@dataclass
class CreatedOrderLine:
    order_id: Optional[int]
    order_number: str
    product_id: int
    product_name: str
    quantity: int
    unit_cost: Decimal
    line_total: Decimal
    supplier: Optional[str]

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class BatchOrderResult:
    batch_number: str
    report: ThresholdReport
    order_details: List[CreatedOrderLine] = field(default_factory=list)
    delivery_date: Optional[datetime] = None
    notes: Optional[str] = None

    @property
    def total_items(self) -> int:
        return len(self.order_details)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "batch_number": self.batch_number,
            "total_items": self.total_items,
            "supplier_summary": [group.as_dict() for group in self.report.groups],
            "order_details": [line.as_dict() for line in self.order_details],
            "delivery_date": self.delivery_date,
            "notes": self.notes,
        }


# ----------------------------------------------------------------------
# Coordinator
# ----------------------------------------------------------------------
class BatchOrderService:
    def __init__(self, db: AsyncSession, settings=None):
        self.db = db
        self.settings = settings or get_settings()
        self.validator = DeliveryThresholdValidator(db, self.settings)

    async def check_delivery(self, request: BatchOrderRequest) -> ThresholdReport:
        """Dry run: classify every supplier group without writing anything."""
        return await self.validator.dry_run(request.items)

    async def place_batch_order(self, request: BatchOrderRequest, actor: str) -> BatchOrderResult:
        """
        Validate and atomically place a batch order.

        Raises:
            ValidationError, NotFoundError, InsufficientStockError,
            DeliveryThresholdError: before any write, with no side effects
            TransactionError: the write sequence failed and was rolled back
        """
        if request.store_id is None:
            raise ValidationError("store_id is required for a batch order")
        if not actor:
            raise ValidationError("An authenticated actor is required")

        report = await self.validator.validate(request.items)

        placed_at = utc_now()
        batch_number = generate_batch_number(placed_at)
        writes = self.plan_writes(report, batch_number, actor, request, placed_at)

        logger.info(
            "Placing batch %s: %d line(s) across %d supplier(s) for store %s by %s",
            batch_number, len(report.lines), len(report.groups), request.store_id, actor,
        )

        try:
            orders = await asyncio.wait_for(
                self._apply_writes(writes),
                timeout=self.settings.ORDER_TRANSACTION_TIMEOUT_SECONDS,
            )
        except Exception as exc:
            await self._rollback(batch_number)
            raise self._as_transaction_error(exc, batch_number) from exc

        details = [
            CreatedOrderLine(
                order_id=order.id,
                order_number=order.order_number,
                product_id=line.product_id,
                product_name=line.name,
                quantity=line.quantity,
                unit_cost=line.unit_cost,
                line_total=line.line_total,
                supplier=line.supplier,
            )
            for order, line in orders
        ]
        logger.info("Batch %s committed with %d order(s)", batch_number, len(details))
        return BatchOrderResult(
            batch_number=batch_number,
            report=report,
            order_details=details,
            delivery_date=request.delivery_date or placed_at,
            notes=request.notes,
        )

    def plan_writes(
        self,
        report: ThresholdReport,
        batch_number: str,
        actor: str,
        request: BatchOrderRequest,
        placed_at: datetime,
    ) -> List[WriteOperation]:
        """Ordered write plan: per line decrement, stock movement, order; then the batch audit row."""
        writes: List[WriteOperation] = []
        seen: Dict[int, int] = {}
        for line in report.lines:
            seen[line.product_id] = seen.get(line.product_id, 0) + 1
            order_number = f"{batch_number}-{line.product_id}"
            if seen[line.product_id] > 1:
                order_number = f"{order_number}-{seen[line.product_id]}"

            writes.append(StockDecrement(line.product_id, line.name, line.quantity))
            writes.append(AppendInventoryTransaction(line, batch_number, actor, request.store_id))
            writes.append(AppendOrder(
                line=line,
                order_number=order_number,
                batch_number=batch_number,
                actor=actor,
                store_id=request.store_id,
                placed_at=placed_at,
                delivery_date=request.delivery_date,
                notes=request.notes,
            ))

        writes.append(AppendAudit(batch_number, actor, {
            "store_id": request.store_id,
            "lines": len(report.lines),
            "total_amount": str(report.total_amount),
            "suppliers": [
                {"supplier": group.supplier, "subtotal": str(group.subtotal), "threshold": str(group.threshold)}
                for group in report.groups
            ],
        }))
        return writes

    async def _apply_writes(self, writes: Sequence[WriteOperation]):
        created = []
        for operation in writes:
            outcome = await operation.apply(self.db)
            if isinstance(outcome, Order):
                created.append((outcome, operation.line))
        await self.db.flush()  # assigns order ids
        await self.db.commit()
        return created

    async def _rollback(self, batch_number: str) -> None:
        try:
            await self.db.rollback()
        except Exception as e:
            logger.error(f"Rollback of batch {batch_number} failed: {str(e)}")

    @staticmethod
    def _as_transaction_error(exc: Exception, batch_number: str) -> TransactionError:
        if isinstance(exc, asyncio.TimeoutError):
            reason = "timeout"
            message = f"Batch {batch_number} timed out and was rolled back"
        elif isinstance(exc, InsufficientStockError):
            reason = "insufficient_stock"
            message = f"Stock changed while batch {batch_number} was being placed; nothing was written"
        else:
            reason = "write_failed"
            message = f"Batch {batch_number} could not be written and was rolled back"

        logger.warning(f"{message}: {exc}")
        detail = {"batch_number": batch_number, "reason": reason}
        if isinstance(exc, OrderServiceError):
            detail["cause"] = exc.to_dict()
        else:
            detail["cause"] = {"error": type(exc).__name__, "message": str(exc)}
        return TransactionError(message, detail)
