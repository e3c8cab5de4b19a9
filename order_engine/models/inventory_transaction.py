from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from order_engine.core.enums import TransactionType
from order_engine.database import Base


class InventoryTransaction(Base):
    """Append-only stock movement. Rows are never updated or deleted."""
    __tablename__ = "inventory_transactions"

    id = Column(Integer, primary_key=True)
    uuid = Column(String(36), nullable=False, unique=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    transaction_type = Column(String(20), nullable=False, default=TransactionType.OUTBOUND.value)
    quantity = Column(Integer, nullable=False)
    reason = Column(String(200), nullable=True)
    reference_no = Column(String(64), nullable=True, index=True)  # batch number
    performed_by = Column(String(100), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    product = relationship("Product", back_populates="inventory_transactions")

    def __repr__(self):
        return f"<InventoryTransaction {self.transaction_type} product={self.product_id} qty={self.quantity}>"
