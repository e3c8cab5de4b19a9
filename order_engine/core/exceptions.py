from typing import Any, Dict, Optional


class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass


class OrderServiceError(BaseServiceError):
    """
    Base exception for batch order errors.

    Every subclass carries a stable ``error_code`` and a structured ``detail``
    dict so the API layer can return a discriminated error body without
    re-parsing the message.
    """

    error_code = "order_error"
    status_code = 400

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.error_code,
            "message": self.message,
            "detail": self.detail,
        }


class ValidationError(OrderServiceError):
    """Raised when a batch request is malformed (empty list, non-positive quantity...)."""
    error_code = "validation_error"


class NotFoundError(OrderServiceError):
    """Raised when a product is unknown or inactive."""
    error_code = "not_found"
    status_code = 404

    def __init__(self, product_id: int):
        super().__init__(
            f"Product {product_id} does not exist or is inactive",
            {"product_id": product_id},
        )
        self.product_id = product_id


class InsufficientStockError(OrderServiceError):
    """Raised when the requested quantity exceeds the current stock."""
    error_code = "insufficient_stock"

    def __init__(self, product_id: int, product_name: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for '{product_name}': available {available}, requested {requested}",
            {
                "product_id": product_id,
                "product_name": product_name,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class DeliveryThresholdError(OrderServiceError):
    """
    Raised when at least one supplier group is below its delivery threshold.

    ``report`` is the complete ThresholdReport, passed and failed groups alike.
    """
    error_code = "delivery_threshold"

    def __init__(self, report):
        failed = report.failed
        super().__init__(
            f"{len(failed)} supplier group(s) below delivery threshold",
            report.as_detail(),
        )
        self.report = report


class TransactionError(OrderServiceError):
    """Raised when the atomic write sequence failed and was rolled back."""
    error_code = "transaction_failed"
    status_code = 409


class AnomalyScanError(BaseServiceError):
    """Raised when one product cannot be loaded or evaluated during a scan."""

    def __init__(self, product_id: Optional[int], message: str):
        super().__init__(message)
        self.product_id = product_id


class NotificationError(BaseServiceError):
    """Raised when the notifier transport rejects or fails a dispatch."""
    pass
