# tests/unit/services/test_notification_service.py
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import httpx
import pytest

from order_engine.core.exceptions import NotificationError
from order_engine.schemas.notifications import (
    AnomalyDigest,
    ScanErrorNotice,
    ShortSupplier,
    ThresholdShortfallAlert,
    TooFrequentAlert,
)
from order_engine.services.anomaly_scan import AnomalyScanService
from order_engine.services.notification_service import NotificationService, TelegramNotifier

DETECTED_AT = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


def frequent_digest():
    return AnomalyDigest(
        store_name="North",
        kind="too_frequent",
        detected_at=DETECTED_AT,
        alerts=[
            TooFrequentAlert(
                product_id=3,
                product_name="Flour",
                supplier="Mill Ltd",
                store_name="North",
                frequency_days=0.5,
                normal_frequency_days=1,
                last_purchase_date=date(2026, 3, 10),
                recent_purchases=2,
                total_quantity=9,
                recommendation="check whether every order was needed",
            )
        ],
    )


def shortfall_alert():
    return ThresholdShortfallAlert(
        store_id=3,
        actor="alice",
        failed_suppliers=[
            ShortSupplier(
                supplier="Mill Ltd",
                subtotal=Decimal("200.00"),
                threshold=Decimal("500.00"),
                shortfall=Decimal("300.00"),
            )
        ],
        passed_count=1,
    )


class RecordingTransport:
    def __init__(self, status_code=200, body=None):
        self.requests = []
        self.status_code = status_code
        self.body = body if body is not None else {"ok": True, "result": {}}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)

    @property
    def payloads(self):
        return [json.loads(request.content) for request in self.requests]


def build_service(settings, handler):
    notifier = TelegramNotifier(settings, transport=httpx.MockTransport(handler))
    return NotificationService(settings, notifier)


@pytest.mark.asyncio
async def test_digest_goes_to_manager_and_staff(settings):
    transport = RecordingTransport()
    service = build_service(settings, transport)

    assert await service.dispatch(frequent_digest()) is True

    assert [str(r.url) for r in transport.requests] == [
        "https://api.telegram.org/bottest-token/sendMessage",
    ] * 2
    manager, staff = transport.payloads
    assert manager["chat_id"] == "manager-chat"
    assert "Ordering too often - North" in manager["text"]
    assert "Flour" in manager["text"]
    assert staff["chat_id"] == "staff-chat"
    assert staff["text"].startswith("Ordering reminder - North")


@pytest.mark.asyncio
async def test_shortfall_goes_to_manager_only(settings):
    transport = RecordingTransport()
    service = build_service(settings, transport)

    await service.dispatch(shortfall_alert())

    assert len(transport.requests) == 1
    text = transport.payloads[0]["text"]
    assert "Mill Ltd: 200.00 of 500.00 (short 300.00)" in text
    assert "1 other supplier group(s)" in text


@pytest.mark.asyncio
async def test_unconfigured_transport_skips_dispatch(settings):
    settings.TELEGRAM_BOT_TOKEN = ""
    transport = RecordingTransport()
    service = build_service(settings, transport)

    assert await service.dispatch(frequent_digest()) is False
    assert transport.requests == []


@pytest.mark.asyncio
async def test_http_error_raises_notification_error(settings):
    service = build_service(settings, RecordingTransport(status_code=502, body={"ok": False}))

    with pytest.raises(NotificationError):
        await service.dispatch(frequent_digest())


@pytest.mark.asyncio
async def test_telegram_rejection_raises_notification_error(settings):
    body = {"ok": False, "description": "Bad Request: chat not found"}
    service = build_service(settings, RecordingTransport(body=body))

    with pytest.raises(NotificationError, match="chat not found"):
        await service.dispatch(ScanErrorNotice(error="boom", occurred_at=DETECTED_AT))


@pytest.mark.asyncio
async def test_dispatch_quietly_swallows_transport_failure(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    service = build_service(settings, handler)

    assert await service.dispatch_quietly(shortfall_alert()) is False


def test_anomaly_digest_rejects_missing_fields():
    with pytest.raises(ValueError):
        AnomalyDigest(
            store_name="North",
            kind="too_frequent",
            detected_at=DETECTED_AT,
            alerts=[{"kind": "too_frequent", "product_id": 3, "product_name": "Flour"}],
        )


def html_proxy_page(request):
    return httpx.Response(200, text="<html>proxy</html>")


@pytest.mark.asyncio
async def test_non_json_reply_raises_notification_error(settings):
    service = build_service(settings, html_proxy_page)

    with pytest.raises(NotificationError, match="non-JSON"):
        await service.dispatch(ScanErrorNotice(error="boom", occurred_at=DETECTED_AT))

    assert await service.dispatch_quietly(ScanErrorNotice(error="boom", occurred_at=DETECTED_AT)) is False


@pytest.mark.asyncio
async def test_failed_scan_still_returns_summary_when_error_notice_fails(settings):
    factory = MagicMock(side_effect=RuntimeError("db down"))
    scan_service = AnomalyScanService(factory, build_service(settings, html_proxy_page), settings)

    summary = await scan_service.run_scan()

    assert summary.success is False
    assert summary.error == "db down"
