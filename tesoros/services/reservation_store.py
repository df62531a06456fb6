"""
Reservation Store

Persistence of StockReservation rows. Every method works inside the caller's
AsyncSession; transaction boundaries belong to the caller (InventoryService
or the sweeper).

Time comes from the injected clock so expiry can be driven deterministically.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from tesoros.core.exceptions import InvalidQuantityError
from tesoros.core.utils import utcnow
from tesoros.models.stock_reservation import (
    StockReservation,
    ReservationOutcome,
    RESERVATION_TTL_MINUTES,
)

logger = logging.getLogger(__name__)


class ReservationStore:
    """Query and mutate stock holds."""

    def __init__(
        self,
        clock: Callable[[], datetime] = utcnow,
        default_duration: timedelta = timedelta(minutes=RESERVATION_TTL_MINUTES),
    ):
        self.clock = clock
        self.default_duration = default_duration

    def now(self) -> datetime:
        return self.clock()

    async def create(
        self,
        db: AsyncSession,
        product_id: int,
        user_id: int,
        quantity: int,
        session_id: Optional[str] = None,
        duration: Optional[timedelta] = None,
    ) -> StockReservation:
        """
        Persist a new active hold expiring `duration` from now.

        Flushes so the returned row carries its assigned id.
        """
        if quantity is None or quantity <= 0:
            raise InvalidQuantityError(
                f"Reservation quantity must be positive, got {quantity}",
                quantity=quantity,
            )

        now = self.now()
        reservation = StockReservation(
            product_id=product_id,
            user_id=user_id,
            quantity=quantity,
            session_id=session_id,
            expires_at=now + (duration or self.default_duration),
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        db.add(reservation)
        await db.flush()
        return reservation

    async def deactivate(
        self,
        db: AsyncSession,
        reservation_id: int,
        outcome: ReservationOutcome,
    ) -> bool:
        """
        Compare-and-set is_active True -> False.

        Returns True only for the caller that performed the transition; a row
        that is already inactive (or missing) is left untouched.
        """
        outcome = ReservationOutcome(outcome)
        result = await db.execute(
            update(StockReservation)
            .where(
                StockReservation.id == reservation_id,
                StockReservation.is_active == True,
            )
            .values(
                is_active=False,
                outcome=outcome.value,
                updated_at=self.now(),
            )
        )
        return result.rowcount == 1

    async def get(self, db: AsyncSession, reservation_id: int) -> Optional[StockReservation]:
        result = await db.execute(
            select(StockReservation).where(StockReservation.id == reservation_id)
        )
        return result.scalar_one_or_none()

    async def active_for_product(self, db: AsyncSession, product_id: int) -> List[StockReservation]:
        """Active, unexpired holds on a product."""
        result = await db.execute(
            select(StockReservation)
            .where(
                StockReservation.product_id == product_id,
                StockReservation.is_active == True,
                StockReservation.expires_at > self.now(),
            )
            .order_by(StockReservation.id)
        )
        return list(result.scalars().all())

    async def active_for_user(
        self,
        db: AsyncSession,
        user_id: int,
        include_expired: bool = False,
    ) -> List[StockReservation]:
        """Active holds owned by a user, unexpired unless include_expired is set."""
        conditions = [
            StockReservation.user_id == user_id,
            StockReservation.is_active == True,
        ]
        if not include_expired:
            conditions.append(StockReservation.expires_at > self.now())

        result = await db.execute(
            select(StockReservation).where(*conditions).order_by(StockReservation.id)
        )
        return list(result.scalars().all())

    async def active_for_pair(
        self,
        db: AsyncSession,
        product_id: int,
        user_id: int,
        include_expired: bool = False,
    ) -> List[StockReservation]:
        """
        Active holds for one (product, user) pair.

        With include_expired=True, rows past their deadline that the sweeper
        has not reached yet are returned too.
        """
        conditions = [
            StockReservation.product_id == product_id,
            StockReservation.user_id == user_id,
            StockReservation.is_active == True,
        ]
        if not include_expired:
            conditions.append(StockReservation.expires_at > self.now())

        result = await db.execute(
            select(StockReservation).where(*conditions).order_by(StockReservation.id)
        )
        return list(result.scalars().all())

    async def latest_for_pair(
        self,
        db: AsyncSession,
        product_id: int,
        user_id: int,
        session_id: Optional[str] = None,
    ) -> Optional[StockReservation]:
        """Most recent hold for the pair in any state, limited to session_id when given."""
        stmt = select(StockReservation).where(
            StockReservation.product_id == product_id,
            StockReservation.user_id == user_id,
        )
        if session_id is not None:
            stmt = stmt.where(StockReservation.session_id == session_id)

        result = await db.execute(stmt.order_by(StockReservation.id.desc()).limit(1))
        return result.scalar_one_or_none()

    async def expired_but_active(self, db: AsyncSession) -> List[StockReservation]:
        """Holds past their deadline that are still flagged active."""
        result = await db.execute(
            select(StockReservation)
            .where(
                StockReservation.is_active == True,
                StockReservation.expires_at <= self.now(),
            )
            .order_by(StockReservation.expires_at, StockReservation.id)
        )
        return list(result.scalars().all())

    async def reserved_quantity(self, db: AsyncSession, product_id: int) -> int:
        """Sum of quantities over active, unexpired holds on a product."""
        result = await db.execute(
            select(func.coalesce(func.sum(StockReservation.quantity), 0)).where(
                StockReservation.product_id == product_id,
                StockReservation.is_active == True,
                StockReservation.expires_at > self.now(),
            )
        )
        return int(result.scalar_one())

    async def stats(self, db: AsyncSession) -> dict:
        """Reservation counts for monitoring."""
        now = self.now()
        soon = now + timedelta(minutes=5)
        active = StockReservation.is_active == True

        stmt = select(
            func.count(StockReservation.id),
            func.count(StockReservation.id).filter(and_(active, StockReservation.expires_at > now)),
            func.count(StockReservation.id).filter(and_(active, StockReservation.expires_at <= now)),
            func.count(StockReservation.id).filter(
                and_(active, StockReservation.expires_at > now, StockReservation.expires_at <= soon)
            ),
            func.count(StockReservation.id).filter(StockReservation.is_active == False),
        )

        total, live, expired, expiring, inactive = (await db.execute(stmt)).one()

        return {
            "total_reservations": int(total or 0),
            "active_reservations": int(live or 0),
            "expired_reservations": int(expired or 0),
            "expiring_within_5min": int(expiring or 0),
            "inactive_reservations": int(inactive or 0),
        }
