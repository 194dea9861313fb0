"""
Typed failures returned by the marketplace operations.

Every error carries a stable machine-checkable ``code`` and a human-readable
message. ``retryable`` is only set for failures that say nothing about the
input itself (storage trouble, lock-wait timeouts); everything else is
terminal for the given input.
"""

from typing import Any, Dict


class MarketError(Exception):
    """Base class for every failure an operation can report."""

    code = "market_error"
    retryable = False

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(MarketError):
    """Malformed or missing input, detected before any store access."""

    code = "validation_error"


class InvalidPrice(ValidationError):
    code = "invalid_price"


class InvalidQuantity(ValidationError):
    code = "invalid_quantity"


class NotFound(MarketError):
    code = "not_found"


class CustomerNotFound(NotFound):
    code = "customer_not_found"


class ProductNotFound(NotFound):
    code = "product_not_found"


class ConflictError(MarketError):
    """The input is well-formed but clashes with the current store state."""

    code = "conflict_error"


class DuplicateEmail(ConflictError):
    code = "duplicate_email"


class InsufficientStock(ConflictError):
    code = "insufficient_stock"


class CustomerHasOrders(ConflictError):
    code = "customer_has_orders"


class StoreError(MarketError):
    """The underlying database failed; the transaction was rolled back."""

    code = "store_error"
    retryable = True


class Conflict(MarketError):
    """A row lock could not be acquired in time."""

    code = "conflict"
    retryable = True
