from tesoros.models.product import Product
from tesoros.models.stock_reservation import StockReservation, ReservationOutcome

__all__ = [
    "Product",
    "StockReservation",
    "ReservationOutcome",
]
