"""
Schemas for the batch order endpoints.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class OrderLineRequest(BaseModel):
    """One requested line: a product and the quantity wanted."""
    product_id: int
    # Positivity is enforced by the validator so the error carries our taxonomy
    quantity: int


class BatchOrderRequest(BaseModel):
    items: List[OrderLineRequest] = Field(default_factory=list)
    delivery_date: Optional[datetime] = None
    notes: Optional[str] = None
    store_id: Optional[int] = None


class DeliveryCheckRequest(BaseModel):
    items: List[OrderLineRequest] = Field(default_factory=list)


class SupplierLineRead(BaseModel):
    product_id: int
    name: str
    quantity: int
    unit: Optional[str] = None
    unit_cost: Decimal
    line_total: Decimal


class SupplierGroupRead(BaseModel):
    supplier: str
    subtotal: Decimal
    threshold: Decimal
    satisfied: bool
    surplus: Decimal
    shortfall: Decimal
    items: List[SupplierLineRead]


class DeliveryCheckResponse(BaseModel):
    success: bool = True
    total_suppliers: int
    can_deliver_count: int
    cannot_deliver_count: int
    suppliers: List[SupplierGroupRead]


class OrderLineResult(BaseModel):
    order_id: Optional[int] = None
    order_number: str
    product_id: int
    product_name: str
    quantity: int
    unit_cost: Decimal
    line_total: Decimal
    supplier: Optional[str] = None


class BatchOrderResponse(BaseModel):
    success: bool = True
    batch_number: str
    total_items: int
    supplier_summary: List[SupplierGroupRead]
    order_details: List[OrderLineResult]
    delivery_date: Optional[datetime] = None
    notes: Optional[str] = None
