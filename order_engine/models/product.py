"""
Product catalog model.

Stock (``current_stock``) is only ever changed by the batch order service,
through a conditional UPDATE that keeps it non-negative.
"""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from order_engine.database import Base


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("current_stock >= 0", name="ck_products_current_stock_non_negative"),
    )

    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    name = Column(String(200), nullable=False)
    supplier = Column(String(200), nullable=True, index=True)
    unit = Column(String(50), nullable=True)
    unit_cost = Column(Numeric(12, 2), nullable=False, default=0)
    current_stock = Column(Integer, nullable=False, default=0)

    # Minimum order value the supplier requires before it will deliver
    delivery_threshold = Column(Numeric(12, 2), nullable=True)

    # Anomaly monitoring windows in days; 0 disables the rule
    frequent_order_days = Column(Integer, nullable=False, default=0)
    rare_order_days = Column(Integer, nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True, index=True)

    orders = relationship("Order", back_populates="product")
    inventory_transactions = relationship("InventoryTransaction", back_populates="product")

    def __repr__(self):
        return f"<Product {self.id} {self.name!r} stock={self.current_stock}>"
