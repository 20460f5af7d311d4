"""
Error taxonomy for the inventory operations.

Every failure leaving the inventory service is an InventoryError whose kind
is one of a closed set, so callers can handle them exhaustively.
"""
import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INSUFFICIENT_STOCK = "insufficient_stock"
    UNAVAILABLE = "unavailable"
    CANCELLED = "cancelled"


class InventoryError(Exception):
    """Base class for classified inventory failures."""

    kind: ErrorKind = ErrorKind.UNAVAILABLE
    default_message = "inventory error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(InventoryError):
    kind = ErrorKind.INVALID_INPUT
    default_message = "invalid input"


class NotFound(InventoryError):
    kind = ErrorKind.NOT_FOUND
    default_message = "not found"


class BookNotFound(NotFound):
    default_message = "book not found"


class StoreNotFound(NotFound):
    default_message = "store not found"


class SKUNotFound(NotFound):
    default_message = "sku not found"


class Conflict(InventoryError):
    kind = ErrorKind.CONFLICT
    default_message = "conflict"


class SKUAlreadyExists(Conflict):
    default_message = "this book already exists in this store"


class InsufficientStock(InventoryError):
    kind = ErrorKind.INSUFFICIENT_STOCK
    default_message = "insufficient stock"


class Unavailable(InventoryError):
    """Storage or transport failure. Safe for the caller to retry."""

    kind = ErrorKind.UNAVAILABLE
    default_message = "storage unavailable"


class OperationCancelled(InventoryError):
    kind = ErrorKind.CANCELLED
    default_message = "operation cancelled before completion"
