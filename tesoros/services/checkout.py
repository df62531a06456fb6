"""
Checkout Inventory

Entry points the cart and order workflows call at each checkout stage:

- reserve_for_checkout: user enters checkout, every line is held
- release_on_abandon: cart abandoned or lines removed
- validate_before_checkout: final check before payment is captured
- confirm_checkout: inside the order transaction, holds become sales

A quantity change on a line swaps the hold atomically; a change that does not
fit leaves the previous hold in place.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from tesoros.core.exceptions import InsufficientStockError
from tesoros.models.stock_reservation import StockReservation
from tesoros.services.inventory_service import InventoryService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutLine:
    product_id: int
    quantity: int


@dataclass
class CheckoutReservation:
    """Result of reserve_for_checkout."""
    success: bool
    reserved: List[int] = field(default_factory=list)
    reused: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class LineIssue:
    product_id: int
    code: str
    message: str


NO_HOLD = "no_hold"
QUANTITY_MISMATCH = "quantity_mismatch"
INSUFFICIENT_STOCK = "insufficient_stock"


class CheckoutInventory:

    def __init__(self, service: InventoryService):
        self.service = service

    async def reserve_for_checkout(
        self,
        user_id: int,
        lines: Iterable[CheckoutLine],
        session_id: Optional[str] = None,
    ) -> CheckoutReservation:
        """
        Hold every line for the user, all or nothing.

        Lines already held with the same quantity are reused. If any line
        cannot be held, new holds taken by this call are released and changed
        holds go back to their previous quantity.
        """
        result = CheckoutReservation(success=True)
        current = {
            r.product_id: r
            for r in await self.service.get_user_reservations(user_id)
        }
        previous = {}

        for line in lines:
            held = current.get(line.product_id)
            if held is not None and held.quantity == line.quantity:
                result.reused.append(line.product_id)
                continue

            if held is None:
                ok = await self.service.reserve_stock(line.product_id, user_id, line.quantity, session_id=session_id)
            else:
                ok = await self.service.change_reservation(
                    line.product_id, user_id, line.quantity, session_id=session_id
                )
                if ok:
                    previous[line.product_id] = held

            if ok:
                result.reserved.append(line.product_id)
            else:
                result.failed.append(line.product_id)

        if result.failed:
            result.success = False
            for product_id in result.reserved:
                await self._undo(user_id, product_id, previous.get(product_id))
            logger.info(
                "Checkout reservation failed for user_id=%s: products=%s",
                user_id,
                result.failed,
            )

        return result

    async def _undo(self, user_id: int, product_id: int, prior: Optional[StockReservation]) -> None:
        if prior is None:
            await self.service.release_reservation(product_id, user_id)
            return
        restored = await self.service.change_reservation(
            product_id, user_id, prior.quantity, session_id=prior.session_id
        )
        if not restored:
            logger.warning(
                "Could not restore hold of %s units: product_id=%s user_id=%s",
                prior.quantity,
                product_id,
                user_id,
            )

    async def release_on_abandon(self, user_id: int, product_ids: Optional[Iterable[int]] = None) -> int:
        """Release the given products' holds, or every hold the user owns."""
        if product_ids is None:
            return await self.service.release_user_reservations(user_id)

        released = 0
        for product_id in product_ids:
            if await self.service.release_reservation(product_id, user_id):
                released += 1
        return released

    async def validate_before_checkout(self, user_id: int, lines: Iterable[CheckoutLine]) -> List[LineIssue]:
        """
        Report lines that can no longer be purchased as requested.

        A line passes if the user holds exactly its quantity, or, without a
        matching hold, if enough unreserved stock is still available.
        """
        held = {
            r.product_id: r.quantity
            for r in await self.service.get_user_reservations(user_id)
        }
        issues = []

        for line in lines:
            held_qty = held.get(line.product_id)
            if held_qty == line.quantity:
                continue

            available = await self.service.get_available_stock(line.product_id)
            if held_qty is not None:
                # The user's own hold counts towards what they can buy
                if available + held_qty >= line.quantity:
                    issues.append(LineIssue(
                        product_id=line.product_id,
                        code=QUANTITY_MISMATCH,
                        message=f"Reserved {held_qty}, cart has {line.quantity}",
                    ))
                else:
                    issues.append(LineIssue(
                        product_id=line.product_id,
                        code=INSUFFICIENT_STOCK,
                        message=f"Only {available + held_qty} available",
                    ))
            elif available >= line.quantity:
                issues.append(LineIssue(
                    product_id=line.product_id,
                    code=NO_HOLD,
                    message="No active reservation; stock is still available",
                ))
            else:
                issues.append(LineIssue(
                    product_id=line.product_id,
                    code=INSUFFICIENT_STOCK,
                    message=f"Only {available} available",
                ))

        return issues

    async def confirm_checkout(
        self,
        user_id: int,
        lines: Iterable[CheckoutLine],
        db: AsyncSession,
        session_id: Optional[str] = None,
    ) -> None:
        """
        Turn the user's holds into sales inside the caller's order transaction.

        Lines without a hold are bought from unreserved stock. A line whose
        hold this checkout already confirmed is skipped, so a retried order
        never takes stock twice. Raises InsufficientStockError when a line
        cannot be covered; the caller must roll back the order.
        """
        for line in lines:
            if await self.service.confirm_reservation(line.product_id, user_id, line.quantity, db=db):
                continue

            if await self.service.was_confirmed(line.product_id, user_id, session_id=session_id, db=db):
                logger.info(
                    "Checkout line already confirmed: product_id=%s user_id=%s session_id=%s",
                    line.product_id,
                    user_id,
                    session_id,
                )
                continue

            if await self.service.commit_unreserved_stock(line.product_id, line.quantity, db=db):
                logger.info(
                    "Checkout line committed without reservation: product_id=%s user_id=%s quantity=%s",
                    line.product_id,
                    user_id,
                    line.quantity,
                )
                continue

            available = await self.service.get_available_stock(line.product_id, db=db)
            raise InsufficientStockError(
                f"Product {line.product_id} can no longer be purchased: "
                f"requested {line.quantity}, available {available}",
                product_id=line.product_id,
                requested_qty=line.quantity,
                available_qty=available,
            )
