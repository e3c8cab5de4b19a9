# order_engine/models/activity_log.py
from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import JSONB

from order_engine.database import Base


class ActivityLog(Base):
    """
    Records significant activities for auditing and monitoring.

    This includes:
    - Committed batch orders
    - One row per anomaly finding
    - One row per anomaly scan (scheduled or manual)
    """
    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True)
    action = Column(String(50), nullable=False, index=True)  # 'batch_order', 'order_anomaly_alert', ...
    entity_type = Column(String(50), nullable=False, index=True)  # 'product', 'batch', 'system'
    entity_id = Column(String(100), nullable=False, index=True)

    details = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)

    actor = Column(String(100), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<ActivityLog {self.action} {self.entity_type} {self.entity_id}>"
