from .activity_log import ActivityLog
from .inventory_transaction import InventoryTransaction
from .order import Order
from .product import Product
from .store import Store

# This ensures all models are registered with SQLAlchemy
__all__ = [
    'ActivityLog',
    'InventoryTransaction',
    'Order',
    'Product',
    'Store',
]
