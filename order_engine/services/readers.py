"""
Read-only access to the catalog and to order history.

The readers never write and never lock: the order service re-checks stock at
write time, and the anomaly scan tolerates slightly stale history.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from order_engine.core.enums import OrderStatus
from order_engine.models.order import Order
from order_engine.models.product import Product
from order_engine.models.store import Store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderHistoryEntry:
    """One past order as seen by the anomaly rules."""
    order_id: int
    product_id: int
    requested_date: datetime
    quantity: int
    store_id: Optional[int]
    store_name: Optional[str]
    unit_cost: Decimal = Decimal("0")


class CatalogReader:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active_products(self, product_ids: Iterable[int]) -> Dict[int, Product]:
        """Active products keyed by id; unknown or inactive ids are simply absent."""
        ids = sorted(set(product_ids))
        if not ids:
            return {}
        result = await self.db.execute(
            select(Product).where(Product.id.in_(ids), Product.is_active.is_(True))
        )
        return {product.id: product for product in result.scalars().all()}

    async def get_monitored_products(self) -> List[Product]:
        """Active products with at least one anomaly window enabled."""
        result = await self.db.execute(
            select(Product)
            .where(
                Product.is_active.is_(True),
                or_(Product.frequent_order_days > 0, Product.rare_order_days > 0),
            )
            .order_by(Product.id)
        )
        return list(result.scalars().all())


class OrderHistoryReader:
    def __init__(self, db: AsyncSession, window: int = 10):
        self.db = db
        self.window = window

    async def recent_orders(self, product_id: int) -> List[OrderHistoryEntry]:
        """
        The ``window`` most recent open orders for a product, most-recent-first.

        Only approved and pending orders count as demand.
        """
        query = (
            select(Order, Store.name)
            .outerjoin(Store, Order.store_id == Store.id)
            .where(
                Order.product_id == product_id,
                Order.status.in_(OrderStatus.open_statuses()),
            )
            .order_by(Order.requested_date.desc(), Order.id.desc())
            .limit(self.window)
        )
        result = await self.db.execute(query)
        return [
            OrderHistoryEntry(
                order_id=order.id,
                product_id=order.product_id,
                requested_date=order.requested_date,
                quantity=order.requested_quantity or 0,
                store_id=order.store_id,
                store_name=store_name,
                unit_cost=order.unit_cost,
            )
            for order, store_name in result.all()
        ]
