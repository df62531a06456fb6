"""
Availability Calculator

available = max(0, on_hand - sum of active, unexpired holds)

Always recomputed from the reservation store; nothing here is cached.
"""
from sqlalchemy.ext.asyncio import AsyncSession

from tesoros.services.reservation_store import ReservationStore


def calculate_available(on_hand: int, held: int) -> int:
    """Units a new reservation may claim. Never negative."""
    return max(0, on_hand - held)


class AvailabilityCalculator:

    def __init__(self, store: ReservationStore):
        self.store = store

    async def available(self, db: AsyncSession, product_id: int, on_hand: int) -> int:
        held = await self.store.reserved_quantity(db, product_id)
        return calculate_available(on_hand, held)
