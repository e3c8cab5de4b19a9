# order_engine/models/order.py
from sqlalchemy import Column, Integer, DateTime, String, Numeric, Text, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from order_engine.core.enums import OrderStatus, OrderUrgency
from order_engine.database import Base


class Order(Base):
    """
    One order line created by a committed batch.

    ``order_number`` is the batch number suffixed with the product id, so it is
    unique per row while ``batch_number`` ties the rows of one submission together.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String(36), nullable=False, unique=True)
    order_number = Column(String(64), nullable=False, unique=True)
    batch_number = Column(String(64), nullable=False, index=True)

    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=True, index=True)

    requested_quantity = Column(Integer, nullable=False)
    approved_quantity = Column(Integer, nullable=True)
    unit_cost = Column(Numeric(12, 2), nullable=False)
    total_cost = Column(Numeric(14, 2), nullable=False)

    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True)
    urgency = Column(String(20), nullable=False, default=OrderUrgency.NORMAL.value)
    reason = Column(String(200), nullable=True)
    supplier = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)

    requested_by = Column(String(100), nullable=False)
    approved_by = Column(String(100), nullable=True)
    requested_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    approved_date = Column(DateTime(timezone=True), nullable=True)
    delivery_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    product = relationship("Product", back_populates="orders")
    store = relationship("Store", back_populates="orders")

    def __repr__(self):
        return f"<Order {self.order_number} qty={self.requested_quantity} {self.status}>"
