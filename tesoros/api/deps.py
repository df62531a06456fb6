"""
API dependencies

Shared FastAPI dependencies. Tests override these through
app.dependency_overrides to point the app at a throwaway database.
"""
from typing import Optional

from tesoros.core.database import get_db
from tesoros.services.inventory_service import InventoryService

__all__ = ["get_db", "get_inventory_service"]

_inventory_service: Optional[InventoryService] = None


def get_inventory_service() -> InventoryService:
    """Process-wide InventoryService; its product locks must be shared by every caller."""
    global _inventory_service
    if _inventory_service is None:
        _inventory_service = InventoryService()
    return _inventory_service
