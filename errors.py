"""Exceptions raised by the marketplace core and mapped to HTTP responses in main.py."""
from typing import List, Optional


class MarketError(Exception):
    """Base exception for all marketplace errors."""

    field: Optional[str] = None

    def errors(self) -> List[dict]:
        return [{"field": self.field, "message": str(self)}]


class ValidationError(MarketError):
    """Malformed input, rejected before any side effect."""

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[List[dict]] = None):
        self.field = field
        self.details = details
        super().__init__(message)

    def errors(self) -> List[dict]:
        if self.details:
            return list(self.details)
        return super().errors()


class ProductNotFound(MarketError):
    field = "product"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class OrderNotFound(MarketError):
    field = "order"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InsufficientStock(MarketError):
    field = "quantity"

    def __init__(self, product_id: str, name: str, available: int, requested: int):
        self.product_id = product_id
        self.name = name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for {name}. Available: {available}, Requested: {requested}"
        )


class StorageError(MarketError):
    """The database could not be reached or rejected an operation."""

    field = "storage"


class PersistenceFailure(StorageError):
    """The order document could not be durably written. No stock was touched."""


class NotAuthenticated(MarketError):
    field = "authorization"

    def __init__(self, message: str = "Not authorized, no principal"):
        super().__init__(message)


class NotAuthorized(MarketError):
    field = "authorization"

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"User role '{role}' is not authorized to access this route")
