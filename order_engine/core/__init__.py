"""
Core module exports.
"""
from .enums import (
    OrderStatus,
    OrderUrgency,
    TransactionType,
    AnomalyKind,
    ScanState,
    ActivityAction
)

from .exceptions import (
    BaseServiceError,
    OrderServiceError,
    ValidationError,
    NotFoundError,
    InsufficientStockError,
    DeliveryThresholdError,
    TransactionError,
    AnomalyScanError,
    NotificationError
)
