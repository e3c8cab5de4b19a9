# tests/conftest.py
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from order_engine.core.config import Settings
from order_engine.models.product import Product

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    """Provide test settings"""
    return Settings(
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        DEFAULT_DELIVERY_THRESHOLD=Decimal("1000"),
        UNASSIGNED_SUPPLIER_LABEL="Unassigned supplier",
        ORDER_TRANSACTION_TIMEOUT_SECONDS=5,
        ANOMALY_HISTORY_WINDOW=10,
        ALL_STORES_LABEL="All stores",
        ANOMALY_SCAN_ENABLED=False,
        TELEGRAM_BOT_TOKEN="test-token",
        TELEGRAM_MANAGER_CHAT_ID="manager-chat",
        TELEGRAM_STAFF_CHAT_ID="staff-chat",
    )


@pytest.fixture
def now():
    return NOW


def make_product(
    id: int = 1,
    name: str = "Milk",
    supplier="Dairy Co",
    unit_cost="50",
    current_stock: int = 100,
    delivery_threshold="1000",
    frequent_order_days: int = 0,
    rare_order_days: int = 0,
    is_active: bool = True,
    created_at=None,
    unit: str = "L",
) -> Product:
    """Transient Product instance; never added to a session."""
    return Product(
        id=id,
        name=name,
        supplier=supplier,
        unit=unit,
        unit_cost=Decimal(unit_cost),
        current_stock=current_stock,
        delivery_threshold=Decimal(delivery_threshold) if delivery_threshold is not None else None,
        frequent_order_days=frequent_order_days,
        rare_order_days=rare_order_days,
        is_active=is_active,
        created_at=created_at or NOW - timedelta(days=365),
    )


@pytest.fixture
def product_factory():
    return make_product


@pytest.fixture
def mock_db():
    """AsyncSession stand-in: awaited methods are AsyncMocks, ``add`` is synchronous."""
    db = AsyncMock()
    db.add = MagicMock()
    db.execute.return_value = MagicMock(rowcount=1)
    return db
