"""
Shared enums and constants used across the application.
"""

from enum import Enum


class OrderStatus(str, Enum):
    """Order status values used in both models and schemas"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def open_statuses(cls):
        # Statuses that count as real demand when scanning order history
        return (cls.APPROVED.value, cls.PENDING.value)


class OrderUrgency(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class TransactionType(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"
    ADJUSTMENT = "adjustment"


class AnomalyKind(str, Enum):
    TOO_RARE = "too_rare"
    TOO_FREQUENT = "too_frequent"


class ScanState(str, Enum):
    """Lifecycle of the anomaly scanner: Idle -> Scanning -> Idle."""
    IDLE = "idle"
    SCANNING = "scanning"


class ActivityAction(str, Enum):
    BATCH_ORDER = "batch_order"
    ORDER_ANOMALY_ALERT = "order_anomaly_alert"
    SCHEDULED_ANOMALY_CHECK = "scheduled_anomaly_check"
