"""
Notifier payloads.

Each notification kind is a fixed pydantic model discriminated on ``kind`` so a
missing field fails at construction time, not inside the message renderer.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class TooRareAlert(BaseModel):
    kind: Literal["too_rare"] = "too_rare"
    product_id: int
    product_name: str
    supplier: Optional[str] = None
    store_name: str
    frequency_days: float          # measured: days since last order
    normal_frequency_days: int     # configured rare_order_days
    last_purchase_date: Optional[date] = None
    recent_purchases: int = 0
    total_quantity: int = 0
    recommendation: str
    supplier_contact: Optional[str] = None


class TooFrequentAlert(BaseModel):
    kind: Literal["too_frequent"] = "too_frequent"
    product_id: int
    product_name: str
    supplier: Optional[str] = None
    store_name: str
    frequency_days: float          # measured: average days between orders
    normal_frequency_days: int     # configured frequent_order_days
    last_purchase_date: Optional[date] = None
    recent_purchases: int
    total_quantity: int
    recommendation: str
    supplier_contact: Optional[str] = None


class ShortSupplier(BaseModel):
    supplier: str
    subtotal: Decimal
    threshold: Decimal
    shortfall: Decimal


class ThresholdShortfallAlert(BaseModel):
    kind: Literal["threshold_shortfall"] = "threshold_shortfall"
    store_id: Optional[int] = None
    actor: str
    failed_suppliers: List[ShortSupplier]
    passed_count: int = 0


FrequencyAlert = Annotated[Union[TooRareAlert, TooFrequentAlert], Field(discriminator="kind")]


class AnomalyDigest(BaseModel):
    """All alerts of one kind for one store; dispatched as a single notification."""
    store_name: str
    kind: Literal["too_rare", "too_frequent"]
    alerts: List[FrequencyAlert]
    detected_at: datetime


class ScanErrorNotice(BaseModel):
    kind: Literal["scan_error"] = "scan_error"
    error: str
    occurred_at: datetime
