# tests/integration/test_batch_order_integration.py
"""
End-to-end checks against a real SQL engine (in-memory SQLite through aiosqlite).

These exercise the conditional stock UPDATE, the single commit and the
rollback path, which the mocked unit tests cannot.
"""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

pytest.importorskip("aiosqlite")

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from order_engine.core.exceptions import DeliveryThresholdError, TransactionError
from order_engine.core.utils import utc_now
from order_engine.database import Base
from order_engine.models import ActivityLog, InventoryTransaction, Order, Product, Store
from order_engine.schemas.order import BatchOrderRequest, OrderLineRequest
from order_engine.services.anomaly_scan import AnomalyScanService
from order_engine.services.batch_order_service import BatchOrderService


@pytest.fixture
async def test_engine():
    """Create and configure the test database engine (function-scoped)."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def seeded(session_factory):
    """Store 1 plus Milk (Dairy Co, threshold 1000) and Flour (Mill Ltd, threshold 500)."""
    async with session_factory() as session:
        session.add(Store(id=1, name="Main Street"))
        session.add(Product(
            id=1, name="Milk", supplier="Dairy Co", unit="L", unit_cost=Decimal("50"),
            current_stock=100, delivery_threshold=Decimal("1000"),
        ))
        session.add(Product(
            id=2, name="Flour", supplier="Mill Ltd", unit="kg", unit_cost=Decimal("20"),
            current_stock=50, delivery_threshold=Decimal("500"),
        ))
        await session.commit()
    return session_factory


@pytest.fixture
async def db_session(seeded):
    async with seeded() as session:
        yield session


def batch(*pairs, store_id=1):
    return BatchOrderRequest(
        items=[OrderLineRequest(product_id=pid, quantity=qty) for pid, qty in pairs],
        store_id=store_id,
    )


async def stock_of(session, product_id):
    return await session.scalar(select(Product.current_stock).where(Product.id == product_id))


async def count(session, model):
    return await session.scalar(select(func.count()).select_from(model))


async def test_batch_meeting_threshold_commits(db_session, settings):
    service = BatchOrderService(db_session, settings)

    result = await service.place_batch_order(batch((1, 25)), actor="alice")

    assert await stock_of(db_session, 1) == 75
    assert await count(db_session, Order) == 1
    assert await count(db_session, InventoryTransaction) == 1
    order = await db_session.scalar(select(Order))
    assert order.batch_number == result.batch_number
    assert order.order_number == f"{result.batch_number}-1"
    assert result.order_details[0].order_id == order.id
    audit = await db_session.scalar(select(ActivityLog).where(ActivityLog.action == "batch_order"))
    assert audit.entity_id == result.batch_number
    assert audit.actor == "alice"


async def test_batch_below_threshold_writes_nothing(db_session, settings):
    service = BatchOrderService(db_session, settings)

    with pytest.raises(DeliveryThresholdError) as exc_info:
        await service.place_batch_order(batch((1, 10)), actor="alice")

    assert exc_info.value.report.failed[0].shortfall == Decimal("500.00")
    assert await stock_of(db_session, 1) == 100
    assert await count(db_session, Order) == 0
    assert await count(db_session, InventoryTransaction) == 0


async def test_one_short_supplier_rejects_whole_batch(db_session, settings):
    service = BatchOrderService(db_session, settings)

    with pytest.raises(DeliveryThresholdError) as exc_info:
        await service.place_batch_order(batch((1, 25), (2, 10)), actor="alice")

    detail = exc_info.value.detail
    assert [g["supplier"] for g in detail["successful_suppliers"]] == ["Dairy Co"]
    assert [g["supplier"] for g in detail["failed_suppliers"]] == ["Mill Ltd"]
    assert await stock_of(db_session, 1) == 100
    assert await stock_of(db_session, 2) == 50
    assert await count(db_session, Order) == 0


async def test_rejected_batch_can_be_resubmitted_unchanged(db_session, settings):
    service = BatchOrderService(db_session, settings)
    rejections = []

    for _ in range(2):
        with pytest.raises(DeliveryThresholdError) as exc_info:
            await service.place_batch_order(batch((2, 10)), actor="alice")
        rejections.append(exc_info.value.detail)

    assert rejections[0] == rejections[1]
    assert rejections[0]["failed_suppliers"][0]["shortfall"] == Decimal("300.00")
    assert await stock_of(db_session, 2) == 50
    assert await count(db_session, Order) == 0


async def test_concurrent_batches_on_separate_sessions_cannot_oversell(seeded, settings):
    async with seeded() as first, seeded() as second:
        late = BatchOrderService(second, settings)
        validate = late.validator.validate

        async def validate_then_let_first_commit(lines):
            report = await validate(lines)
            # Both batches passed validation against 100 units of Milk; the first writes now
            await BatchOrderService(first, settings).place_batch_order(batch((1, 60)), actor="alice")
            return report

        late.validator.validate = validate_then_let_first_commit

        with pytest.raises(TransactionError) as exc_info:
            await late.place_batch_order(batch((1, 60)), actor="bob")

    assert exc_info.value.detail["reason"] == "insufficient_stock"
    async with seeded() as session:
        assert await stock_of(session, 1) == 40
        orders = (await session.execute(select(Order))).scalars().all()
    assert [order.requested_by for order in orders] == ["alice"]


async def test_stock_spent_after_validation_rolls_back_every_line(db_session, settings):
    service = BatchOrderService(db_session, settings)
    validate = service.validator.validate

    async def validate_then_drain(lines):
        report = await validate(lines)
        # Another writer empties Flour between validation and the write sequence
        await db_session.execute(update(Product).where(Product.id == 2).values(current_stock=3))
        return report

    service.validator.validate = validate_then_drain

    with pytest.raises(TransactionError) as exc_info:
        await service.place_batch_order(batch((1, 25), (2, 30)), actor="alice")

    assert exc_info.value.detail["reason"] == "insufficient_stock"
    assert await stock_of(db_session, 1) == 100
    assert await count(db_session, Order) == 0
    assert await count(db_session, InventoryTransaction) == 0
    assert await count(db_session, ActivityLog) == 0


async def test_scan_records_findings(seeded, settings):
    now = utc_now()
    async with seeded() as session:
        await session.execute(update(Product).where(Product.id == 1).values(rare_order_days=2))
        session.add(Order(
            uuid="00000000-0000-0000-0000-000000000001",
            order_number="ORD-OLD-1",
            batch_number="ORD-OLD",
            product_id=1,
            store_id=1,
            requested_quantity=8,
            unit_cost=Decimal("50"),
            total_cost=Decimal("400"),
            status="approved",
            urgency="normal",
            requested_by="alice",
            requested_date=now - timedelta(days=5),
        ))
        await session.commit()

    notifier = MagicMock()
    notifier.dispatch = AsyncMock(return_value=True)
    notifier.dispatch_quietly = AsyncMock(return_value=True)
    service = AnomalyScanService(seeded, notifier, settings, clock=lambda: now)

    summary = await service.run_scan(trigger="manual", actor="alice")

    assert summary.success
    assert summary.findings_count == 1
    assert summary.products_checked == 1
    digest = notifier.dispatch.await_args.args[0]
    assert digest.store_name == "Main Street"
    assert digest.alerts[0].frequency_days == 5

    async with seeded() as session:
        rows = (await session.execute(select(ActivityLog).order_by(ActivityLog.id))).scalars().all()
    assert [row.action for row in rows] == ["order_anomaly_alert", "scheduled_anomaly_check"]
    assert rows[0].details["anomaly_days"] == 5
