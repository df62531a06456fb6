"""
Stock Reservation model

Temporarily holds product stock for a user during checkout so that two
concurrent buyers cannot both claim the same units. A reservation never
touches Product.stock: it only lowers the derived "available" quantity until
it is released, confirmed or expired.
"""
import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import relationship

from tesoros.core.database import Base
from tesoros.core.utils import as_utc

# Default reservation TTL in minutes
RESERVATION_TTL_MINUTES = 15


class ReservationOutcome(str, enum.Enum):
    """Why an inactive reservation stopped holding stock."""
    RELEASED = "released"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"


class StockReservation(Base):
    """
    Temporary stock hold for one (product, user) pair.

    Lifecycle:
    1. Created active by a checkout reservation (expires_at = now + hold duration)
    2. Deactivated exactly once, by release, confirmation or the expiry sweep
    3. Inactive rows are terminal audit records and never reactivated

    quantity, expires_at and session_id are immutable after creation.
    """
    __tablename__ = "stock_reservations"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        Index("ix_stock_reservations_product_user_active", "product_id", "user_id", "is_active"),
        Index("ix_stock_reservations_expires_active", "expires_at", "is_active"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    session_id = Column(String(100), nullable=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    outcome = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    product = relationship("Product")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if this reservation is past its deadline."""
        now = now or datetime.now(timezone.utc)
        return now >= as_utc(self.expires_at)

    @property
    def state(self) -> str:
        """Lifecycle state: 'active' or the terminal outcome tag."""
        if self.is_active:
            return "active"
        return self.outcome or ReservationOutcome.RELEASED.value

    def __repr__(self) -> str:
        return (
            f"<StockReservation id={self.id} product_id={self.product_id} "
            f"user_id={self.user_id} quantity={self.quantity} state={self.state}>"
        )
