"""
Tesoros Exception Hierarchy

Structured exception classes for the stock reservation engine.
All exceptions include code, message, and details for audit trail and debugging.

Capacity rejections (not enough stock, user already holds the product) are NOT
exceptions: the engine returns False for those. Exceptions are reserved for
precondition violations and hard failures the caller must abort on.

Exception Hierarchy:
    TesorosBaseError
    └── InventoryError
        ├── InvalidQuantityError
        ├── ProductNotFoundError
        ├── InsufficientStockError
        ├── ReservationQuantityMismatchError
        └── ReservationLockTimeoutError
"""
from typing import Optional, Dict, Any


class TesorosBaseError(Exception):
    """
    Base exception for all Tesoros custom errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        severity: P0-P3 severity level
    """

    default_code: str = "TESOROS_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# INVENTORY ERRORS
# =============================================================================

class InventoryError(TesorosBaseError):
    """Base exception for inventory-related errors."""
    default_code = "INVENTORY_ERROR"
    default_severity = "P1"


class InvalidQuantityError(InventoryError):
    """Requested quantity is not a positive integer."""
    default_code = "INVALID_QUANTITY"
    default_severity = "P3"

    def __init__(self, message: str, quantity: Optional[int] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["quantity"] = quantity
        super().__init__(message, details=details, **kwargs)


class ProductNotFoundError(InventoryError):
    """Product row is missing from the catalog."""
    default_code = "PRODUCT_NOT_FOUND"
    default_severity = "P2"

    def __init__(self, message: str, product_id: Optional[int] = None, **kwargs):
        details = kwargs.pop("details", {})
        details["product_id"] = product_id
        super().__init__(message, details=details, **kwargs)


class InsufficientStockError(InventoryError):
    """
    On-hand stock dropped below the quantity being committed.

    Raised at confirmation time; the enclosing checkout transaction must roll
    back. Never retry without re-validating availability.
    """
    default_code = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        message: str,
        product_id: Optional[int] = None,
        requested_qty: Optional[int] = None,
        available_qty: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "product_id": product_id,
            "requested_qty": requested_qty,
            "available_qty": available_qty,
        })
        super().__init__(message, details=details, **kwargs)


class ReservationQuantityMismatchError(InventoryError):
    """Confirmation quantity differs from the quantity held."""
    default_code = "RESERVATION_QUANTITY_MISMATCH"

    def __init__(
        self,
        message: str,
        reservation_id: Optional[int] = None,
        held_qty: Optional[int] = None,
        requested_qty: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "reservation_id": reservation_id,
            "held_qty": held_qty,
            "requested_qty": requested_qty,
        })
        super().__init__(message, details=details, **kwargs)


class ReservationLockTimeoutError(InventoryError):
    """Timed out waiting for the per-product reservation lock."""
    default_code = "RESERVATION_LOCK_TIMEOUT"
    default_severity = "P2"

    def __init__(
        self,
        message: str,
        product_id: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "product_id": product_id,
            "timeout_seconds": timeout_seconds,
        })
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# EXCEPTION CATALOG
# =============================================================================

EXCEPTION_CATALOG = {
    "INVALID_QUANTITY": {"class": InvalidQuantityError, "severity": "P3"},
    "PRODUCT_NOT_FOUND": {"class": ProductNotFoundError, "severity": "P2"},
    "INSUFFICIENT_STOCK": {"class": InsufficientStockError, "severity": "P1"},
    "RESERVATION_QUANTITY_MISMATCH": {"class": ReservationQuantityMismatchError, "severity": "P1"},
    "RESERVATION_LOCK_TIMEOUT": {"class": ReservationLockTimeoutError, "severity": "P2"},
}
