# inventory/models/__init__.py

from inventory.models.lot import InventoryLot, InventoryTxn
from inventory.models.product import Product

__all__ = [
    "Product",
    "InventoryLot",
    "InventoryTxn",
]
