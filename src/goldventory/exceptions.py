"""Exception hierarchy for the inventory core."""
from __future__ import annotations

from typing import Any


class GoldventoryError(Exception):
    """Base exception for inventory core errors."""

    default_message = "An error occurred in the inventory core"

    def __init__(
        self,
        message: str | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.code = code
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        error_dict: dict[str, Any] = {
            "error": self.__class__.__name__,
            "message": self.message,
        }
        if self.code:
            error_dict["code"] = self.code
        if self.details:
            error_dict["details"] = self.details
        return error_dict


class ValidationError(GoldventoryError):
    """Raised when a key segment, quantity or payload is rejected before writing."""

    default_message = "Validation error"


class NotFoundError(GoldventoryError):
    """Raised when a referenced document is missing."""

    default_message = "Referenced record not found"


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: int) -> None:
        super().__init__(f"Order {order_id} not found", code="order_not_found", details={"order_id": order_id})


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id: str) -> None:
        super().__init__(
            f"Product {product_id} not found",
            code="product_not_found",
            details={"product_id": product_id},
        )


class OrderLineNotFoundError(NotFoundError):
    def __init__(self, order_id: int, product_id: str, weight_key: str) -> None:
        super().__init__(
            f"Order {order_id} does not contain item {product_id}/{weight_key}",
            code="order_line_not_found",
            details={"order_id": order_id, "product_id": product_id, "weight_key": weight_key},
        )


class PersistenceError(GoldventoryError):
    """Raised when the backing store rejects or fails a write."""

    default_message = "Persistence error"


class ConcurrentUpdateError(PersistenceError):
    """Raised when an optimistic version check fails during a transaction."""

    default_message = "Record was modified concurrently"


class PersistenceUnavailableError(PersistenceError):
    """Raised when no backing store has been configured."""

    default_message = "Persistence layer is not available"


__all__ = [
    "GoldventoryError",
    "ValidationError",
    "NotFoundError",
    "OrderNotFoundError",
    "ProductNotFoundError",
    "OrderLineNotFoundError",
    "PersistenceError",
    "ConcurrentUpdateError",
    "PersistenceUnavailableError",
]
