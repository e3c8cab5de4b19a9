# tests/unit/services/test_batch_order_service.py
import asyncio
import re
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from order_engine.core.exceptions import (
    DeliveryThresholdError,
    TransactionError,
    ValidationError,
)
from order_engine.models.activity_log import ActivityLog
from order_engine.models.inventory_transaction import InventoryTransaction
from order_engine.models.order import Order
from order_engine.schemas.order import BatchOrderRequest, OrderLineRequest
from order_engine.services.batch_order_service import (
    AppendAudit,
    AppendInventoryTransaction,
    AppendOrder,
    BatchOrderService,
    StockDecrement,
    generate_batch_number,
)
from order_engine.services.delivery_threshold import (
    evaluate_thresholds,
    group_by_supplier,
    resolve_lines,
)


def build_request(*pairs, store_id=3, notes=None):
    return BatchOrderRequest(
        items=[OrderLineRequest(product_id=pid, quantity=qty) for pid, qty in pairs],
        store_id=store_id,
        notes=notes,
    )


def build_report(products, request):
    resolved = resolve_lines(request.items, {p.id: p for p in products})
    return evaluate_thresholds(group_by_supplier(resolved, Decimal("1000"), "Unassigned supplier"))


@pytest.fixture
def service(mock_db, settings):
    return BatchOrderService(mock_db, settings)


@pytest.fixture
def two_supplier_products(product_factory):
    return [
        product_factory(id=1, name="Milk", supplier="Dairy Co", unit_cost="50"),
        product_factory(id=2, name="Flour", supplier="Mill Ltd", unit_cost="20", delivery_threshold="200"),
    ]


def added_rows(mock_db, model):
    return [c.args[0] for c in mock_db.add.call_args_list if isinstance(c.args[0], model)]


"""
1. Batch numbers and write plan
"""

def test_batch_number_format():
    number = generate_batch_number(datetime(2026, 3, 10, 8, 5, 9, tzinfo=timezone.utc))
    assert re.fullmatch(r"ORD-20260310-080509-[0-9A-F]{6}", number)


def test_batch_numbers_are_unique():
    moment = datetime(2026, 3, 10, tzinfo=timezone.utc)
    assert len({generate_batch_number(moment) for _ in range(50)}) == 50


def test_plan_writes_orders_each_line_then_audit(service, two_supplier_products, now):
    request = build_request((1, 25), (2, 10))
    report = build_report(two_supplier_products, request)

    writes = service.plan_writes(report, "ORD-X", "alice", request, now)

    assert [type(w) for w in writes] == [
        StockDecrement, AppendInventoryTransaction, AppendOrder,
        StockDecrement, AppendInventoryTransaction, AppendOrder,
        AppendAudit,
    ]
    assert [w.order_number for w in writes if isinstance(w, AppendOrder)] == ["ORD-X-1", "ORD-X-2"]


def test_repeated_product_gets_distinct_order_numbers(service, product_factory, now):
    request = build_request((1, 10), (1, 15))
    report = build_report([product_factory(id=1)], request)

    writes = service.plan_writes(report, "ORD-X", "alice", request, now)

    assert [w.order_number for w in writes if isinstance(w, AppendOrder)] == ["ORD-X-1", "ORD-X-1-2"]


"""
2. Placement
"""

@pytest.mark.asyncio
async def test_place_batch_order_commits_all_lines(service, mock_db, two_supplier_products, mocker):
    request = build_request((1, 25), (2, 10), notes="weekly top-up")
    mocker.patch.object(
        service.validator, "validate",
        AsyncMock(return_value=build_report(two_supplier_products, request)),
    )

    result = await service.place_batch_order(request, actor="alice")

    assert re.fullmatch(r"ORD-\d{8}-\d{6}-[0-9A-F]{6}", result.batch_number)
    assert result.total_items == 2
    assert mock_db.execute.await_count == 2  # one conditional decrement per line
    mock_db.commit.assert_awaited_once()
    mock_db.rollback.assert_not_awaited()

    orders = added_rows(mock_db, Order)
    assert [o.order_number for o in orders] == [f"{result.batch_number}-1", f"{result.batch_number}-2"]
    assert all(o.batch_number == result.batch_number for o in orders)
    assert all(o.requested_by == "alice" and o.store_id == 3 for o in orders)
    assert orders[0].total_cost == Decimal("1250.00")

    movements = added_rows(mock_db, InventoryTransaction)
    assert [(m.product_id, m.quantity) for m in movements] == [(1, 25), (2, 10)]
    assert all(m.reference_no == result.batch_number for m in movements)

    audit = added_rows(mock_db, ActivityLog)
    assert len(audit) == 1
    assert audit[0].entity_id == result.batch_number

    body = result.as_dict()
    assert body["success"] is True
    assert [s["supplier"] for s in body["supplier_summary"]] == ["Dairy Co", "Mill Ltd"]
    assert body["notes"] == "weekly top-up"


@pytest.mark.asyncio
async def test_threshold_rejection_writes_nothing(service, mock_db, product_factory, mocker):
    request = build_request((1, 10))
    mocker.patch.object(
        service.validator, "validate",
        AsyncMock(side_effect=DeliveryThresholdError(build_report([product_factory(id=1)], request))),
    )

    with pytest.raises(DeliveryThresholdError):
        await service.place_batch_order(request, actor="alice")

    mock_db.execute.assert_not_awaited()
    mock_db.add.assert_not_called()
    mock_db.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_store_id_is_required(service, mock_db):
    with pytest.raises(ValidationError):
        await service.place_batch_order(build_request((1, 1), store_id=None), actor="alice")
    mock_db.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_actor_is_required(service):
    with pytest.raises(ValidationError):
        await service.place_batch_order(build_request((1, 1)), actor="")


"""
3. Rollback paths
"""

@pytest.mark.asyncio
async def test_stock_race_rolls_back_whole_batch(service, mock_db, two_supplier_products, mocker):
    request = build_request((1, 25), (2, 10))
    mocker.patch.object(
        service.validator, "validate",
        AsyncMock(return_value=build_report(two_supplier_products, request)),
    )
    # Second product's stock was spent by another batch after validation
    mock_db.execute.side_effect = [MagicMock(rowcount=1), MagicMock(rowcount=0)]
    mock_db.scalar.return_value = 4

    with pytest.raises(TransactionError) as exc_info:
        await service.place_batch_order(request, actor="alice")

    error = exc_info.value
    assert error.status_code == 409
    assert error.detail["reason"] == "insufficient_stock"
    assert error.detail["cause"]["detail"]["available"] == 4
    assert error.detail["batch_number"].startswith("ORD-")
    mock_db.rollback.assert_awaited_once()
    mock_db.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_timeout_rolls_back(service, mock_db, settings, product_factory, mocker):
    settings.ORDER_TRANSACTION_TIMEOUT_SECONDS = 0.05
    request = build_request((1, 25))
    mocker.patch.object(
        service.validator, "validate",
        AsyncMock(return_value=build_report([product_factory(id=1)], request)),
    )

    async def slow_execute(*args, **kwargs):
        await asyncio.sleep(1)
        return MagicMock(rowcount=1)

    mock_db.execute.side_effect = slow_execute

    with pytest.raises(TransactionError) as exc_info:
        await service.place_batch_order(request, actor="alice")

    assert exc_info.value.detail["reason"] == "timeout"
    mock_db.rollback.assert_awaited_once()
    mock_db.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_commit_failure_rolls_back(service, mock_db, product_factory, mocker):
    request = build_request((1, 25))
    mocker.patch.object(
        service.validator, "validate",
        AsyncMock(return_value=build_report([product_factory(id=1)], request)),
    )
    mock_db.commit.side_effect = RuntimeError("connection reset")

    with pytest.raises(TransactionError) as exc_info:
        await service.place_batch_order(request, actor="alice")

    assert exc_info.value.detail["reason"] == "write_failed"
    assert exc_info.value.detail["cause"] == {"error": "RuntimeError", "message": "connection reset"}
    mock_db.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_check_delivery_never_writes(service, mock_db, product_factory, mocker):
    request = build_request((1, 10), store_id=None)
    mocker.patch.object(
        service.validator, "dry_run",
        AsyncMock(return_value=build_report([product_factory(id=1)], request)),
    )

    report = await service.check_delivery(request)

    assert not report.ok
    mock_db.add.assert_not_called()
    mock_db.commit.assert_not_awaited()
