from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.orm import relationship

from order_engine.database import Base


class Store(Base):
    """Branch that places orders."""
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    orders = relationship("Order", back_populates="store")
