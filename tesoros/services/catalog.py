"""
Catalog store boundary

The product catalog is owned elsewhere; the reservation engine only reads the
on-hand count and, when a sale is committed, decrements it.
"""
import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tesoros.core.exceptions import InsufficientStockError, ProductNotFoundError
from tesoros.models.product import Product

logger = logging.getLogger(__name__)


class CatalogStore:
    """Reads and decrements Product.stock."""

    async def get_on_hand_stock(
        self,
        db: AsyncSession,
        product_id: int,
        for_update: bool = False,
    ) -> Optional[int]:
        """
        Current on-hand stock, or None when the product does not exist.

        for_update=True takes a row lock held until the enclosing transaction
        ends (ignored by SQLite).
        """
        query = select(Product.stock).where(Product.id == product_id)
        if for_update:
            query = query.with_for_update()  # Pessimistic lock
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def decrement_stock(self, db: AsyncSession, product_id: int, quantity: int) -> int:
        """
        Permanently remove `quantity` units from on-hand stock.

        The guard in the WHERE clause re-checks stock at write time, so the
        count can never go negative. Returns the remaining stock.
        """
        result = await db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
        )
        current = await self.get_on_hand_stock(db, product_id)
        if result.rowcount == 1:
            return current

        if current is None:
            raise ProductNotFoundError(
                f"Product {product_id} not found",
                product_id=product_id,
            )

        logger.error(
            "Stock decrement refused for product_id=%s: requested=%s on_hand=%s",
            product_id,
            quantity,
            current,
        )
        raise InsufficientStockError(
            f"Insufficient stock for product {product_id}: requested {quantity}, on hand {current}",
            product_id=product_id,
            requested_qty=quantity,
            available_qty=current,
        )
