"""Telegram notification helpers for ordering anomalies and rejected batches."""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Union

import httpx

from order_engine.core.config import Settings, get_settings
from order_engine.core.exceptions import NotificationError
from order_engine.schemas.notifications import (
    AnomalyDigest,
    ScanErrorNotice,
    ThresholdShortfallAlert,
    TooFrequentAlert,
    TooRareAlert,
)

logger = logging.getLogger(__name__)

Payload = Union[AnomalyDigest, ThresholdShortfallAlert, ScanErrorNotice]


class TelegramNotifier:
    """Thin ``sendMessage`` client for the Telegram Bot API."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    @property
    def configured(self) -> bool:
        settings = self._settings
        return bool(settings.TELEGRAM_BOT_TOKEN and (settings.TELEGRAM_MANAGER_CHAT_ID or settings.TELEGRAM_STAFF_CHAT_ID))

    async def send_message(self, chat_id: str, text: str) -> None:
        url = f"{self._settings.TELEGRAM_API_BASE}/bot{self._settings.TELEGRAM_BOT_TOKEN}/sendMessage"
        async with httpx.AsyncClient(timeout=self._settings.TELEGRAM_TIMEOUT, transport=self._transport) as client:
            try:
                response = await client.post(url, json={"chat_id": chat_id, "text": text})
            except httpx.HTTPError as exc:
                raise NotificationError(f"Telegram request failed: {exc}") from exc

        if response.status_code != 200:
            raise NotificationError(f"Telegram returned {response.status_code}: {response.text[:200]}")
        try:
            body = response.json()
        except ValueError as exc:
            raise NotificationError(f"Telegram returned a non-JSON body: {response.text[:200]}") from exc
        if not body.get("ok", False):
            raise NotificationError(f"Telegram rejected message: {body.get('description', 'unknown error')}")


class NotificationService:
    """
    Renders notification payloads and dispatches them.

    Each payload becomes a detailed manager message and, where it makes sense,
    a short staff message. ``dispatch`` raises NotificationError when the
    transport fails so the caller decides whether to log or propagate.
    """

    def __init__(self, settings: Settings, notifier: Optional[TelegramNotifier] = None):
        self._settings = settings
        self._notifier = notifier or TelegramNotifier(settings)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def dispatch(self, payload: Payload) -> bool:
        """Send one notification. Returns False when no transport is configured."""
        if not self._notifier.configured:
            logger.warning("Telegram not configured; %s notification skipped", type(payload).__name__)
            return False

        manager_text, staff_text = self.render(payload)
        targets = [
            (self._settings.TELEGRAM_MANAGER_CHAT_ID, manager_text),
            (self._settings.TELEGRAM_STAFF_CHAT_ID, staff_text),
        ]
        for chat_id, text in targets:
            if chat_id and text:
                await self._notifier.send_message(chat_id, text)
        logger.info("%s notification sent", type(payload).__name__)
        return True

    async def dispatch_quietly(self, payload: Payload) -> bool:
        """Fire-and-forget variant for background tasks: failures are logged, never raised."""
        try:
            return await self.dispatch(payload)
        except NotificationError as exc:
            logger.error("Failed to send %s notification: %s", type(payload).__name__, exc)
            return False
        except Exception as exc:
            logger.exception("Unexpected error sending %s notification: %s", type(payload).__name__, exc)
            return False

    def render(self, payload: Payload) -> tuple:
        if isinstance(payload, AnomalyDigest):
            return self._render_digest(payload)
        if isinstance(payload, ThresholdShortfallAlert):
            return self._render_shortfall(payload), None
        if isinstance(payload, ScanErrorNotice):
            return self._render_scan_error(payload), None
        raise TypeError(f"Unsupported notification payload: {type(payload).__name__}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _render_digest(self, digest: AnomalyDigest) -> tuple:
        title = "Ordering too often" if digest.kind == "too_frequent" else "Ordering overdue"
        lines: List[str] = [
            f"{title} - {digest.store_name}",
            f"Detected at: {digest.detected_at:%Y-%m-%d %H:%M} UTC",
            "",
        ]
        for alert in digest.alerts:
            lines.extend(self._alert_lines(alert))
            lines.append("")
        lines.append(f"{len(digest.alerts)} product(s) flagged")

        staff_hint = (
            "Stock should be sufficient, check before ordering again"
            if digest.kind == "too_frequent"
            else "Stock may be running low, place orders early"
        )
        staff_lines = [f"Ordering reminder - {digest.store_name}"]
        staff_lines.extend(f"- {alert.product_name}" for alert in digest.alerts)
        staff_lines.append(staff_hint)
        return "\n".join(lines), "\n".join(staff_lines)

    @staticmethod
    def _alert_lines(alert: Union[TooRareAlert, TooFrequentAlert]) -> Sequence[str]:
        last_purchase = alert.last_purchase_date.isoformat() if alert.last_purchase_date else "never"
        return [
            f"Product: {alert.product_name}",
            f"Supplier: {alert.supplier or 'unassigned'}",
            f"Current frequency: every {alert.frequency_days:g} day(s)",
            f"Expected frequency: every {alert.normal_frequency_days} day(s)",
            f"Last purchase: {last_purchase}",
            f"Recent purchases: {alert.recent_purchases}",
            f"Recommendation: {alert.recommendation}",
            f"Supplier contact: {alert.supplier_contact or 'see supplier list'}",
        ]

    @staticmethod
    def _render_shortfall(alert: ThresholdShortfallAlert) -> str:
        lines = [
            "Batch order rejected: delivery threshold not met",
            f"Store: {alert.store_id if alert.store_id is not None else 'n/a'}",
            f"Requested by: {alert.actor}",
        ]
        for supplier in alert.failed_suppliers:
            lines.append(
                f"- {supplier.supplier}: {supplier.subtotal} of {supplier.threshold} "
                f"(short {supplier.shortfall})"
            )
        if alert.passed_count:
            lines.append(f"{alert.passed_count} other supplier group(s) met their threshold")
        return "\n".join(lines)

    @staticmethod
    def _render_scan_error(notice: ScanErrorNotice) -> str:
        return "\n".join([
            "Anomaly scan failed",
            f"Time: {notice.occurred_at:%Y-%m-%d %H:%M} UTC",
            f"Error: {notice.error}",
            "Check the service logs",
        ])


def get_notification_service() -> NotificationService:
    """Factory for dependency injection."""

    settings = get_settings()
    return NotificationService(settings)
