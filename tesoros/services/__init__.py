from tesoros.services.reservation_store import ReservationStore
from tesoros.services.availability import AvailabilityCalculator, calculate_available
from tesoros.services.catalog import CatalogStore
from tesoros.services.inventory_service import InventoryService
from tesoros.services.checkout import CheckoutInventory, CheckoutLine, CheckoutReservation, LineIssue

__all__ = [
    "ReservationStore",
    "AvailabilityCalculator",
    "calculate_available",
    "CatalogStore",
    "InventoryService",
    "CheckoutInventory",
    "CheckoutLine",
    "CheckoutReservation",
    "LineIssue",
]
