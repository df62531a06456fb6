"""
Inventory Service

Stock reservation engine used by checkout.

Reserving stock never touches Product.stock: a hold only lowers the derived
available quantity (on-hand minus active, unexpired holds). Stock is
decremented exactly once, when a hold is confirmed or an unreserved purchase is
committed.

Every check-then-act sequence runs as one unit of work under the product's
lock plus a row lock on the product, so concurrent buyers cannot both claim the
last units. Operations accept an optional `db` session: when given they join
the caller's transaction instead of committing their own.

Capacity rejections return False. Precondition violations and consistency
failures raise InventoryError subclasses.
"""
import logging
from datetime import timedelta
from typing import Callable, Awaitable, List, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tesoros.core.config import settings
from tesoros.core.database import AsyncSessionLocal
from tesoros.core.exceptions import InvalidQuantityError, ReservationQuantityMismatchError
from tesoros.core.unit_of_work import UnitOfWork, ProductLockRegistry
from tesoros.models.stock_reservation import StockReservation, ReservationOutcome
from tesoros.services.availability import AvailabilityCalculator
from tesoros.services.catalog import CatalogStore
from tesoros.services.reservation_store import ReservationStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InventoryService:
    """Reserve, release, confirm and expire stock holds."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        store: Optional[ReservationStore] = None,
        catalog: Optional[CatalogStore] = None,
        hold_duration: Optional[timedelta] = None,
        lock_timeout: Optional[float] = None,
        enforce_confirm_quantity: Optional[bool] = None,
        locks: Optional[ProductLockRegistry] = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.hold_duration = hold_duration or timedelta(minutes=settings.RESERVATION_HOLD_MINUTES)
        self.store = store or ReservationStore(default_duration=self.hold_duration)
        self.catalog = catalog or CatalogStore()
        self.availability = AvailabilityCalculator(self.store)
        self.lock_timeout = (
            lock_timeout if lock_timeout is not None else settings.RESERVATION_LOCK_TIMEOUT_SECONDS
        )
        self.enforce_confirm_quantity = (
            enforce_confirm_quantity
            if enforce_confirm_quantity is not None
            else settings.RESERVATION_ENFORCE_CONFIRM_QUANTITY
        )
        self.locks = locks or ProductLockRegistry()

    def _unit(self, db: Optional[AsyncSession] = None) -> UnitOfWork:
        return UnitOfWork(session_factory=self.session_factory, session=db)

    async def _locked(
        self,
        product_id: int,
        db: Optional[AsyncSession],
        fn: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        """Run `fn` atomically while holding the product's reservation lock."""
        async with self.locks.hold(product_id, timeout=self.lock_timeout):
            return await self._unit(db).run_atomically(fn)

    @staticmethod
    def _require_positive(quantity: int) -> None:
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise InvalidQuantityError(
                f"Quantity must be a positive integer, got {quantity!r}",
                quantity=quantity,
            )

    # ------------------------------------------------------------------
    # Reservation lifecycle
    # ------------------------------------------------------------------

    async def reserve_stock(
        self,
        product_id: int,
        user_id: int,
        quantity: int,
        session_id: Optional[str] = None,
        db: Optional[AsyncSession] = None,
    ) -> bool:
        """
        Hold `quantity` units of a product for a user.

        Returns False when the user already holds this product, when the
        product is unknown, or when fewer than `quantity` units are available.
        """
        self._require_positive(quantity)
        return await self._locked(
            product_id,
            db,
            lambda session: self._reserve(session, product_id, user_id, quantity, session_id),
        )

    async def change_reservation(
        self,
        product_id: int,
        user_id: int,
        quantity: int,
        session_id: Optional[str] = None,
        db: Optional[AsyncSession] = None,
    ) -> bool:
        """
        Replace the user's hold on a product with one for `quantity` units.

        The user's current hold counts towards what is available. When the new
        quantity does not fit, False is returned and the current hold is left
        as it was. Without a current hold this behaves like reserve_stock.
        """
        self._require_positive(quantity)
        return await self._locked(
            product_id,
            db,
            lambda session: self._reserve(session, product_id, user_id, quantity, session_id, replace=True),
        )

    async def _reserve(
        self,
        db: AsyncSession,
        product_id: int,
        user_id: int,
        quantity: int,
        session_id: Optional[str],
        replace: bool = False,
    ) -> bool:
        on_hand = await self.catalog.get_on_hand_stock(db, product_id, for_update=True)
        if on_hand is None:
            logger.warning("Reservation rejected: product_id=%s not found", product_id)
            return False

        now = self.store.now()
        current = None
        for existing in await self.store.active_for_pair(db, product_id, user_id, include_expired=True):
            if existing.is_expired(now):
                # Past its deadline but not swept yet; retire it so a fresh hold can be taken
                await self.store.deactivate(db, existing.id, ReservationOutcome.EXPIRED)
                continue
            if replace:
                current = existing
                continue
            logger.info(
                "Reservation rejected: user_id=%s already holds product_id=%s (reservation_id=%s)",
                user_id,
                product_id,
                existing.id,
            )
            return False

        available = await self.availability.available(db, product_id, on_hand)
        if current is not None:
            available += current.quantity
        if available < quantity:
            logger.info(
                "Reservation rejected: product_id=%s requested=%s available=%s",
                product_id,
                quantity,
                available,
            )
            return False

        if current is not None:
            if not await self.store.deactivate(db, current.id, ReservationOutcome.RELEASED):
                return False
            logger.info(
                "STOCK_METRIC: reservation_released reservation_id=%s product_id=%s user_id=%s quantity=%s",
                current.id,
                product_id,
                user_id,
                current.quantity,
            )

        reservation = await self.store.create(
            db,
            product_id=product_id,
            user_id=user_id,
            quantity=quantity,
            session_id=session_id,
            duration=self.hold_duration,
        )
        logger.info(
            "STOCK_METRIC: reservation_created reservation_id=%s product_id=%s user_id=%s quantity=%s expires_at=%s",
            reservation.id,
            product_id,
            user_id,
            quantity,
            reservation.expires_at.isoformat(),
        )
        return True

    async def release_reservation(
        self,
        product_id: int,
        user_id: int,
        db: Optional[AsyncSession] = None,
    ) -> bool:
        """
        Give back the user's hold on a product.

        Idempotent: returns False when there was nothing active to release.
        """

        async def _release(session: AsyncSession) -> bool:
            held = await self.store.active_for_pair(session, product_id, user_id, include_expired=True)
            released = 0
            for reservation in held:
                if await self.store.deactivate(session, reservation.id, ReservationOutcome.RELEASED):
                    released += 1
                    logger.info(
                        "STOCK_METRIC: reservation_released reservation_id=%s product_id=%s user_id=%s quantity=%s",
                        reservation.id,
                        product_id,
                        user_id,
                        reservation.quantity,
                    )
            return released > 0

        return await self._locked(product_id, db, _release)

    async def get_available_stock(self, product_id: int, db: Optional[AsyncSession] = None) -> int:
        """On-hand stock minus active holds; 0 for an unknown product."""

        async def _available(session: AsyncSession) -> int:
            on_hand = await self.catalog.get_on_hand_stock(session, product_id)
            if on_hand is None:
                return 0
            return await self.availability.available(session, product_id, on_hand)

        return await self._unit(db).run_atomically(_available)

    async def confirm_reservation(
        self,
        product_id: int,
        user_id: int,
        quantity: int,
        db: Optional[AsyncSession] = None,
    ) -> bool:
        """
        Convert the user's hold into a permanent stock decrement.

        Returns False if the user holds nothing unexpired for this product, so a
        repeated call never decrements twice. Raises InsufficientStockError when
        on-hand stock no longer covers the hold; the unit of work rolls back.
        """
        self._require_positive(quantity)
        return await self._locked(
            product_id,
            db,
            lambda session: self._confirm(session, product_id, user_id, quantity),
        )

    async def _confirm(self, db: AsyncSession, product_id: int, user_id: int, quantity: int) -> bool:
        await self.catalog.get_on_hand_stock(db, product_id, for_update=True)

        held = await self.store.active_for_pair(db, product_id, user_id)
        if not held:
            logger.warning(
                "Confirmation skipped: no active reservation for product_id=%s user_id=%s",
                product_id,
                user_id,
            )
            return False

        reservation = held[0]
        if reservation.quantity != quantity:
            if self.enforce_confirm_quantity:
                raise ReservationQuantityMismatchError(
                    f"Reservation {reservation.id} holds {reservation.quantity} units, "
                    f"confirmation requested {quantity}",
                    reservation_id=reservation.id,
                    held_qty=reservation.quantity,
                    requested_qty=quantity,
                )
            logger.warning(
                "Confirming reservation_id=%s with quantity=%s different from held=%s",
                reservation.id,
                quantity,
                reservation.quantity,
            )

        if not await self.store.deactivate(db, reservation.id, ReservationOutcome.CONFIRMED):
            # Lost the race against release or the sweeper
            return False

        remaining = await self.catalog.decrement_stock(db, product_id, quantity)
        logger.info(
            "STOCK_METRIC: reservation_confirmed reservation_id=%s product_id=%s user_id=%s quantity=%s stock_remaining=%s",
            reservation.id,
            product_id,
            user_id,
            quantity,
            remaining,
        )
        return True

    async def cleanup_expired_reservations(self) -> dict:
        """
        Deactivate every hold past its deadline.

        Each record is retired in its own transaction; failures are logged and
        counted, never raised.

        Returns:
            dict with counts of released reservations, restored units,
            affected products and errors
        """
        stats = {
            "reservations_released": 0,
            "stock_restored": 0,
            "products_restored": 0,
            "errors": 0,
        }

        try:
            expired = await self._unit().run_atomically(self.store.expired_but_active)
        except Exception as e:
            logger.error(f"Error listing expired reservations: {e}", exc_info=True)
            stats["errors"] += 1
            return stats

        if not expired:
            logger.debug("No expired reservations to clean up")
            return stats

        products = set()
        for reservation in expired:
            try:
                released = await self._unit().run_atomically(
                    lambda session, rid=reservation.id: self.store.deactivate(
                        session, rid, ReservationOutcome.EXPIRED
                    )
                )
            except Exception as e:
                logger.error(
                    f"Error expiring reservation {reservation.id}: {e}",
                    exc_info=True,
                )
                stats["errors"] += 1
                continue

            if released:
                stats["reservations_released"] += 1
                stats["stock_restored"] += reservation.quantity
                products.add(reservation.product_id)

        stats["products_restored"] = len(products)

        if stats["reservations_released"]:
            logger.info(
                f"Released {stats['reservations_released']} expired reservations, "
                f"restored {stats['stock_restored']} units across {stats['products_restored']} products"
            )

        return stats

    # ------------------------------------------------------------------
    # Queries and order-workflow helpers
    # ------------------------------------------------------------------

    async def release_user_reservations(self, user_id: int, db: Optional[AsyncSession] = None) -> int:
        """Release every active hold of a user. Returns the number released."""

        async def _release_all(session: AsyncSession) -> int:
            released = 0
            for reservation in await self.store.active_for_user(session, user_id, include_expired=True):
                if await self.store.deactivate(session, reservation.id, ReservationOutcome.RELEASED):
                    released += 1
            return released

        released = await self._unit(db).run_atomically(_release_all)
        if released:
            logger.info("Released %s reservations for user_id=%s", released, user_id)
        return released

    async def get_user_reservations(
        self, user_id: int, db: Optional[AsyncSession] = None
    ) -> List[StockReservation]:
        return await self._unit(db).run_atomically(
            lambda session: self.store.active_for_user(session, user_id)
        )

    async def get_active_reservations(
        self, product_id: int, db: Optional[AsyncSession] = None
    ) -> List[StockReservation]:
        return await self._unit(db).run_atomically(
            lambda session: self.store.active_for_product(session, product_id)
        )

    async def has_active_reservation(
        self, product_id: int, user_id: int, db: Optional[AsyncSession] = None
    ) -> bool:
        held = await self._unit(db).run_atomically(
            lambda session: self.store.active_for_pair(session, product_id, user_id)
        )
        return bool(held)

    async def was_confirmed(
        self,
        product_id: int,
        user_id: int,
        session_id: Optional[str] = None,
        db: Optional[AsyncSession] = None,
    ) -> bool:
        """
        Whether the user's latest hold on a product has already been confirmed.

        With a session_id only holds taken in that checkout session count.
        Without one, the confirmed hold must still be inside its hold window,
        so a later purchase of the same product is not mistaken for a retry.
        """

        async def _check(session: AsyncSession) -> bool:
            latest = await self.store.latest_for_pair(session, product_id, user_id, session_id=session_id)
            if latest is None or latest.is_active:
                return False
            if latest.outcome != ReservationOutcome.CONFIRMED.value:
                return False
            return session_id is not None or not latest.is_expired(self.store.now())

        return await self._unit(db).run_atomically(_check)

    async def commit_unreserved_stock(
        self,
        product_id: int,
        quantity: int,
        db: Optional[AsyncSession] = None,
    ) -> bool:
        """
        Decrement stock for a purchase that never took a hold.

        Availability is re-validated against other users' holds under the
        product lock; returns False when the units are no longer free.
        """
        self._require_positive(quantity)

        async def _commit(session: AsyncSession) -> bool:
            on_hand = await self.catalog.get_on_hand_stock(session, product_id, for_update=True)
            if on_hand is None:
                return False
            available = await self.availability.available(session, product_id, on_hand)
            if available < quantity:
                logger.info(
                    "Unreserved purchase rejected: product_id=%s requested=%s available=%s",
                    product_id,
                    quantity,
                    available,
                )
                return False
            remaining = await self.catalog.decrement_stock(session, product_id, quantity)
            logger.info(
                "STOCK_METRIC: unreserved_stock_committed product_id=%s quantity=%s stock_remaining=%s",
                product_id,
                quantity,
                remaining,
            )
            return True

        return await self._locked(product_id, db, _commit)

    async def reservation_stats(self, db: Optional[AsyncSession] = None) -> dict:
        return await self._unit(db).run_atomically(self.store.stats)
